# =========================
# server/tts_stack/engine.py
# =========================
import re
import struct
from typing import Iterator, Optional

VOICE_ID_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")
STREAM_SENTINEL = 0xFFFFFFFF


class SynthesisError(RuntimeError):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class UnknownVoiceError(SynthesisError):
    def __init__(self, message: str):
        super().__init__(message, status_code=400)


def check_voice_id(voice: str) -> str:
    if not VOICE_ID_PATTERN.match(voice) or voice.startswith("."):
        raise UnknownVoiceError(f"Invalid voice id: {voice!r}")
    return voice


def wav_header(sample_rate: int, data_size: int = STREAM_SENTINEL, num_channels: int = 1,
               bits_per_sample: int = 16) -> bytes:
    """
    RIFF/WAVE header for 16-bit PCM. With the default ``data_size`` both size
    fields carry the 0xFFFFFFFF sentinel used for streaming of unknown length.
    """
    byte_rate = sample_rate * num_channels * bits_per_sample // 8
    block_align = num_channels * bits_per_sample // 8
    riff_size = STREAM_SENTINEL if data_size == STREAM_SENTINEL else 36 + data_size
    return (
        b"RIFF" + struct.pack("<I", riff_size) + b"WAVE"
        + b"fmt " + struct.pack("<IHHIIHH", 16, 1, num_channels, sample_rate, byte_rate, block_align, bits_per_sample)
        + b"data" + struct.pack("<I", data_size)
    )


class Engine:
    name = "base"

    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        raise NotImplementedError

    def stream(self, text: str, voice: Optional[str] = None) -> Iterator[bytes]:
        yield self.synthesize(text, voice)


def load_engine(settings) -> Engine:
    if settings.engine == "coqui":
        from tts_stack.tts_coqui import CoquiEngine
        return CoquiEngine(settings.coqui_model, speaker_wav=settings.coqui_speaker_wav,
                           language=settings.coqui_lang)
    if settings.engine == "piper":
        from tts_stack.tts import PiperEngine
        return PiperEngine(settings.piper_voices_dir, settings.piper_voice, piper_bin=settings.piper_bin)
    if settings.engine == "remote":
        from tts_stack.tts_remote import RemoteEngine
        return RemoteEngine(settings.backend_url, settings.backend_path, default_voice=settings.piper_voice,
                            timeout=settings.backend_timeout)
    raise ValueError(f"Unknown TTS_ENGINE {settings.engine!r}; expected coqui, piper or remote")
