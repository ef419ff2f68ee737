"""Shared fixtures: a fake engine so API tests never load a real model."""
from __future__ import annotations

from pathlib import Path
from typing import Iterator, List, Optional

import pytest
from fastapi.testclient import TestClient

from tts_stack.config import Settings
from tts_stack.engine import Engine, UnknownVoiceError, wav_header
from tts_stack.main import create_app

PCM = b"\x00\x01" * 800


class FakeEngine(Engine):
    name = "fake"

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.fail: Optional[Exception] = None

    def synthesize(self, text: str, voice: Optional[str] = None) -> bytes:
        self.calls.append((text, voice))
        if self.fail is not None:
            raise self.fail
        if voice == "nobody":
            raise UnknownVoiceError("Unknown voice: nobody")
        return wav_header(22050, data_size=len(PCM)) + PCM

    def stream(self, text: str, voice: Optional[str] = None) -> Iterator[bytes]:
        data = self.synthesize(text, voice)
        yield data[:44]
        yield data[44:]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    web_dir = tmp_path / "web"
    web_dir.mkdir()
    return Settings(engine="fake", audio_dir=tmp_path / "audio", retention_seconds=3600, web_dir=web_dir)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def client(settings: Settings, engine: FakeEngine) -> TestClient:
    return TestClient(create_app(settings, engine=engine))
