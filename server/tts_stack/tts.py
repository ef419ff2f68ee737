# server/tts_stack/tts.py
import json
import logging
import pathlib
import shlex
import subprocess
from typing import Iterator, Optional, Tuple

from tts_stack.engine import Engine, SynthesisError, UnknownVoiceError, check_voice_id, wav_header

logger = logging.getLogger("tts_stack.piper")

DEFAULT_SAMPLE_RATE = 22050  # Piper default output


class PiperEngine(Engine):
    """Runs the piper CLI once per request and wraps its raw PCM as WAV."""

    name = "piper"

    def __init__(self, voices_dir, default_voice: str, piper_bin: str = "piper"):
        self.voices_dir = pathlib.Path(voices_dir)
        self.default_voice = default_voice
        self.piper_bin = piper_bin

    def voice_files(self, voice: Optional[str] = None) -> Tuple[pathlib.Path, pathlib.Path]:
        voice = check_voice_id(voice or self.default_voice)
        model = self.voices_dir / f"{voice}.onnx"
        # Piper's config is alongside the model with ".json" appended to the ONNX name
        cfg = self.voices_dir / f"{voice}.onnx.json"
        if not model.exists() and not cfg.exists():
            raise UnknownVoiceError(f"Unknown voice: {voice}")
        for p in (model, cfg):
            if not p.exists() or p.stat().st_size < 100:  # ~empty guard
                raise SynthesisError(
                    f"Piper voice file missing or empty: {p}. "
                    f"Re-download the voice so both {model} and {cfg} exist with non-zero size."
                )
        return model, cfg

    def sample_rate(self, cfg: pathlib.Path) -> int:
        try:
            return int(json.loads(cfg.read_text(encoding="utf-8"))["audio"]["sample_rate"])
        except (ValueError, KeyError, TypeError):
            return DEFAULT_SAMPLE_RATE

    def _raw_chunks(self, text: str, model: pathlib.Path, cfg: pathlib.Path) -> Iterator[bytes]:
        cmd = f"{shlex.quote(self.piper_bin)} --model {shlex.quote(str(model))} --config {shlex.quote(str(cfg))} --output_raw"
        try:
            proc = subprocess.Popen(shlex.split(cmd), stdin=subprocess.PIPE, stdout=subprocess.PIPE)
        except FileNotFoundError:
            raise SynthesisError(f"piper binary not found: {self.piper_bin}")
        assert proc.stdin is not None and proc.stdout is not None
        try:
            # newline helps Piper start synthesis
            proc.stdin.write((text + "\n").encode("utf-8"))
            proc.stdin.close()

            while True:
                chunk = proc.stdout.read(4096)
                if not chunk:
                    break
                yield chunk
            proc.wait()
        finally:
            # reader went away mid-stream
            if proc.poll() is None:
                proc.kill()
                proc.wait()
        if proc.returncode != 0:
            raise SynthesisError(f"Piper exited with code {proc.returncode}. Check model/config paths and logs.")

    def stream(self, text: str, voice: Optional[str] = None) -> Iterator[bytes]:
        model, cfg = self.voice_files(voice)
        logger.info("Streaming %d chars with %s", len(text), model.name)
        chunks = self._raw_chunks(text, model, cfg)
        try:
            # start piper before the header goes out so launch failures surface as errors
            first = next(chunks, b"")
            yield wav_header(self.sample_rate(cfg)) + first
            yield from chunks
        finally:
            chunks.close()

    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        model, cfg = self.voice_files(voice)
        logger.info("Synthesizing %d chars with %s", len(text), model.name)
        pcm = b"".join(self._raw_chunks(text, model, cfg))
        return wav_header(self.sample_rate(cfg), data_size=len(pcm)) + pcm
