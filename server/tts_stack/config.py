# =========================
# server/tts_stack/config.py
# =========================
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import find_dotenv, load_dotenv


def _int_env(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _optional_path(name: str) -> Optional[Path]:
    raw = os.getenv(name, "").strip()
    return Path(raw) if raw else None


@dataclass
class Settings:
    engine: str = "coqui"
    host: str = "0.0.0.0"
    port: int = 5000
    audio_dir: Path = Path("audio_files")
    retention_seconds: int = 3600
    cors_origins: List[str] = field(default_factory=lambda: ["*"])

    coqui_model: str = "tts_models/fa/cv/tacotron2-DDC"
    coqui_speaker_wav: List[str] = field(default_factory=list)
    coqui_lang: Optional[str] = None

    piper_bin: str = "piper"
    piper_voices_dir: Path = Path("/models/piper")
    piper_voice: str = "fa_IR-parsa-medium"

    backend_url: str = "http://localhost:5000"
    backend_path: str = "/synthesize"
    backend_timeout: int = 60

    web_dir: Optional[Path] = None
    log_dir: Optional[Path] = None
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))
        # One or more reference files (comma-separated) for multi-speaker models
        refs = os.getenv("COQUI_SPEAKER_WAV", "").strip()
        return cls(
            engine=os.getenv("TTS_ENGINE", "coqui").strip().lower(),
            host=os.getenv("API_HOST", "0.0.0.0"),
            port=_int_env("API_PORT", "5000"),
            audio_dir=Path(os.getenv("AUDIO_DIR", "audio_files")),
            retention_seconds=_int_env("RETENTION_SECONDS", "3600"),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
            coqui_model=os.getenv("COQUI_MODEL", "tts_models/fa/cv/tacotron2-DDC"),
            coqui_speaker_wav=[p.strip() for p in refs.split(",") if p.strip()],
            coqui_lang=os.getenv("COQUI_LANG", "").strip() or None,
            piper_bin=os.getenv("PIPER_BIN", "piper"),
            piper_voices_dir=Path(os.getenv("PIPER_VOICES_DIR", "/models/piper")),
            piper_voice=os.getenv("PIPER_VOICE", "fa_IR-parsa-medium"),
            backend_url=os.getenv("BACKEND_URL", "http://localhost:5000").rstrip("/"),
            backend_path=os.getenv("BACKEND_PATH", "/synthesize"),
            backend_timeout=_int_env("BACKEND_TIMEOUT", "60"),
            web_dir=_optional_path("WEB_DIR"),
            log_dir=_optional_path("LOG_DIR"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )
