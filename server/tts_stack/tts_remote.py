# server/tts_stack/tts_remote.py
import logging
from typing import Iterator, Optional

import requests

from tts_stack.engine import Engine, SynthesisError, check_voice_id

logger = logging.getLogger("tts_stack.remote")


class RemoteEngine(Engine):
    """Forwards requests to a Piper HTTP server, e.g. a rhasspy/piper container."""

    name = "remote"

    def __init__(self, base_url: str, path: str = "/synthesize", default_voice: Optional[str] = None,
                 timeout: int = 60, session: Optional[requests.Session] = None):
        self.url = base_url.rstrip("/") + "/" + path.lstrip("/")
        self.default_voice = default_voice
        self.timeout = timeout
        self.session = session or requests.Session()

    def _request(self, text: str, voice: Optional[str]) -> requests.Response:
        params = {"text": text}
        voice = voice or self.default_voice
        if voice:
            params["voice"] = check_voice_id(voice)
        try:
            resp = self.session.get(self.url, params=params, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise SynthesisError(f"TTS backend unreachable at {self.url}: {e}", status_code=502)
        if resp.status_code != 200:
            body = resp.text[:200].strip()
            resp.close()
            raise SynthesisError(
                f"TTS backend returned {resp.status_code}" + (f": {body}" if body else ""),
                status_code=resp.status_code,
            )
        return resp

    def stream(self, text: str, voice: Optional[str] = None) -> Iterator[bytes]:
        resp = self._request(text, voice)
        with resp:
            for chunk in resp.iter_content(chunk_size=8192):
                if chunk:
                    yield chunk

    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        resp = self._request(text, voice)
        with resp:
            data = resp.content
        if not data:
            raise SynthesisError("TTS backend returned an empty body", status_code=502)
        return data
