# server/tts_stack/tts_coqui.py
import io
import logging
from typing import List, Optional

import numpy as np
import soundfile as sf

from tts_stack.engine import Engine, SynthesisError, UnknownVoiceError

logger = logging.getLogger("tts_stack.coqui")

DEFAULT_SAMPLE_RATE = 22050


class CoquiEngine(Engine):
    name = "coqui"

    def __init__(self, model_name: str, speaker_wav: Optional[List[str]] = None, language: Optional[str] = None):
        self.model_name = model_name
        self.speaker_wav = speaker_wav or None
        self.language = language
        self._model = None

    def _ensure_model_loaded(self):
        if self._model is None:
            try:
                from TTS.api import TTS as _COQUI_TTS
            except Exception as e:
                raise SynthesisError(f"Coqui TTS not available: {e}")
            logger.info("Loading Coqui model %s", self.model_name)
            self._model = _COQUI_TTS(model_name=self.model_name, progress_bar=False)
        return self._model

    def _speaker(self, model, voice: Optional[str]) -> Optional[str]:
        speakers = getattr(model, "speakers", None) or []
        if not voice or not speakers:
            # single-speaker models ignore the voice hint
            return None
        if voice not in speakers:
            raise UnknownVoiceError(f"Unknown voice: {voice}")
        return voice

    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        """
        Synthesize `text` with the configured Coqui model to PCM_16 WAV bytes.
        """
        model = self._ensure_model_loaded()
        kwargs = {}
        speaker = self._speaker(model, voice)
        if speaker:
            kwargs["speaker"] = speaker
        if self.speaker_wav:
            kwargs["speaker_wav"] = self.speaker_wav
        if self.language:
            kwargs["language"] = self.language

        wav = model.tts(text=text, **kwargs)
        synthesizer = getattr(model, "synthesizer", None)
        sample_rate = getattr(synthesizer, "output_sample_rate", None) or DEFAULT_SAMPLE_RATE

        # Write to a WAV in-memory
        buf = io.BytesIO()
        sf.write(buf, np.asarray(wav, dtype=np.float32), sample_rate, subtype="PCM_16", format="WAV")
        return buf.getvalue()
