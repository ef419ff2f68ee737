"""Fetch voice models before the services start."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Tuple

import requests

from tts_stack.deploy.environment import DeployError

logger = logging.getLogger("tts_stack.deploy")

PIPER_VOICES_URL = "https://huggingface.co/rhasspy/piper-voices/resolve/main"


def piper_voice_url(voice: str) -> str:
    """Catalogue URL for a ``lang_REGION-name-quality`` voice id."""
    try:
        lang_region, name, quality = voice.split("-", 2)
    except ValueError:
        raise DeployError(f"Cannot derive a download URL for voice {voice!r}; pass --voice-url")
    lang = lang_region.split("_", 1)[0]
    return f"{PIPER_VOICES_URL}/{lang}/{lang_region}/{name}/{quality}"


def download_file(url: str, dest: Path, *, session: Optional[requests.Session] = None, timeout: int = 120) -> Path:
    session = session or requests.Session()
    dest.parent.mkdir(parents=True, exist_ok=True)
    partial = dest.with_name(dest.name + ".part")
    try:
        with session.get(url, stream=True, timeout=timeout) as resp:
            resp.raise_for_status()
            with partial.open("wb") as handle:
                for chunk in resp.iter_content(chunk_size=65536):
                    handle.write(chunk)
    except requests.RequestException as exc:
        partial.unlink(missing_ok=True)
        raise DeployError(f"Failed to download {url}: {exc}") from exc
    if partial.stat().st_size == 0:
        partial.unlink()
        raise DeployError(f"Downloaded file from {url} is empty")
    partial.replace(dest)
    return dest


def download_piper_voice(
    voice: str,
    dest_dir: Path,
    *,
    base_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> Tuple[Path, ...]:
    """Fetch ``<voice>.onnx`` and ``<voice>.onnx.json``, keeping non-empty files already present."""
    base_url = (base_url or piper_voice_url(voice)).rstrip("/")
    saved: List[Path] = []
    for suffix in (".onnx", ".onnx.json"):
        target = dest_dir / f"{voice}{suffix}"
        if target.exists() and target.stat().st_size > 0:
            logger.info("Skipping existing file %s", target)
            saved.append(target)
            continue
        url = f"{base_url}/{voice}{suffix}"
        logger.info("Downloading %s -> %s", url, target)
        saved.append(download_file(url, target, session=session))
    return tuple(saved)


def coqui_prefetch_command(python: Path, model_name: str, tts_home: Path) -> List[str]:
    """Load the model once so Coqui downloads it into ``tts_home``."""
    script = f"from TTS.api import TTS; TTS(model_name={model_name!r}, progress_bar=False)"
    return ["env", f"TTS_HOME={tts_home}", str(python), "-c", script]
