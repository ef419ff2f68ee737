# server/tts_stack/storage.py
import logging
import time
import uuid
from pathlib import Path
from typing import Optional

logger = logging.getLogger("tts_stack.storage")


class AudioStore:
    """Transient WAV files, each under a fresh uuid name, purged after ``retention_seconds``."""

    def __init__(self, directory: Path, retention_seconds: int = 3600) -> None:
        self.directory = Path(directory)
        self.retention_seconds = retention_seconds
        self.directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def new_filename() -> str:
        return f"{uuid.uuid4()}.wav"

    def save(self, data: bytes) -> str:
        filename = self.new_filename()
        (self.directory / filename).write_bytes(data)
        return filename

    def resolve(self, filename: str) -> Path:
        # only bare names that live directly in the store
        if not filename or Path(filename).name != filename or filename in {".", ".."}:
            raise FileNotFoundError(filename)
        path = self.directory / filename
        if path.resolve().parent != self.directory.resolve() or not path.is_file():
            raise FileNotFoundError(filename)
        return path

    def purge_expired(self, now: Optional[float] = None) -> int:
        cutoff = (time.time() if now is None else now) - self.retention_seconds
        removed = 0
        for path in self.directory.iterdir():
            try:
                if path.is_file() and path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                # raced with another request doing the same sweep
                continue
        if removed:
            logger.info("Purged %d expired audio file(s) from %s", removed, self.directory)
        return removed
