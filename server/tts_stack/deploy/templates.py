"""Generated-file templates shipped with the package.

Placeholders use ``@@name`` (or ``@@{name}``) so the ``$`` used by PHP,
JavaScript and Apache passes through untouched.
"""
from __future__ import annotations

from importlib import resources
from string import Template
from typing import Mapping

TEMPLATE_NAMES = (
    "api.service",
    "docker.service",
    "web.service",
    "apache-vhost.conf",
    "index.html",
    "proxy.html",
    "index.php",
    "tts_handler.php",
    "test-tts.sh",
)


class FileTemplate(Template):
    delimiter = "@@"


def load_template(name: str) -> FileTemplate:
    if name not in TEMPLATE_NAMES:
        raise KeyError(f"Unknown template: {name}")
    source = resources.files("tts_stack.deploy").joinpath("templates").joinpath(name).read_text(encoding="utf-8")
    return FileTemplate(source)


def render(name: str, **values: object) -> str:
    """Fill ``name``; a placeholder without a value raises ``KeyError``."""
    return load_template(name).substitute({k: str(v) for k, v in values.items()})


def render_env(values: Mapping[str, object]) -> str:
    lines = []
    for key, value in values.items():
        text = "" if value is None else str(value)
        if any(ch in text for ch in ' "#'):
            text = '"' + text.replace('"', '\\"') + '"'
        lines.append(f"{key}={text}")
    return "\n".join(lines) + "\n"

