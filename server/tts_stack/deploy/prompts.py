"""Interactive questions asked at install time."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Union

from tts_stack.deploy.environment import DeployError

InputFn = Callable[[str], str]
PORT_PATTERN = re.compile(r"^[0-9]+$")


@dataclass
class Answers:
    host: str
    api_port: int
    web_port: int


def ask(question: str, default: str, input_fn: InputFn = input) -> str:
    reply = input_fn(f"{question} (default: {default}): ").strip()
    return reply or default


def validate_port(value: Union[str, int]) -> int:
    text = str(value).strip()
    if not PORT_PATTERN.match(text) or not 1 <= int(text) <= 65535:
        raise DeployError(f"Invalid port number: {text}. Must be a number between 1 and 65535.")
    return int(text)


def collect_answers(
    defaults: Answers,
    *,
    host: Optional[str] = None,
    api_port: Optional[Union[str, int]] = None,
    web_port: Optional[Union[str, int]] = None,
    interactive: bool = True,
    input_fn: InputFn = input,
) -> Answers:
    """Take each value from its flag when given, otherwise prompt (or use the default)."""

    def pick(given, question, default):
        if given is not None:
            return str(given)
        if not interactive:
            return str(default)
        return ask(question, str(default), input_fn)

    chosen_host = pick(host, "Enter the server's IP address or domain name", defaults.host)
    chosen_api = pick(api_port, "Enter the port for the TTS API", defaults.api_port)
    chosen_web = pick(web_port, "Enter the port for the web interface", defaults.web_port)
    return Answers(host=chosen_host, api_port=validate_port(chosen_api), web_port=validate_port(chosen_web))
