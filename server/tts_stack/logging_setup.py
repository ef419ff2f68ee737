"""Logging helpers: rotating log files plus a console handler."""
from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

DEFAULT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


class ConsoleFormatter(logging.Formatter):
    """Installer console output: ``[INFO] message`` coloured by level."""

    COLORS = {
        logging.DEBUG: "",
        logging.INFO: "\033[0;32m",
        logging.WARNING: "\033[1;33m",
        logging.ERROR: "\033[0;31m",
        logging.CRITICAL: "\033[0;31m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True) -> None:
        super().__init__("[%(levelname)s] %(message)s")
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        color = self.COLORS.get(record.levelno, "")
        if not self.color or not color:
            return text
        return f"{color}{text}{self.RESET}"


def get_logger(
    name: str,
    log_dir: Optional[Path] = None,
    *,
    level: Union[int, str] = logging.INFO,
    console: Optional[logging.Formatter] = None,
) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        if console is not None:
            for handler in logger.handlers:
                if type(handler) is logging.StreamHandler:
                    handler.setFormatter(console)
        return logger

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(log_dir / f"{name}.log", maxBytes=2_000_000, backupCount=3)
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(console or logging.Formatter(DEFAULT_FORMAT))
    logger.addHandler(stream)
    logger.propagate = False
    return logger
