"""Host checks run before anything is installed."""
from __future__ import annotations

import os
import pwd
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional


class DeployError(Exception):
    """Installation cannot continue; shown to the operator as ``[ERROR] ...``."""


@dataclass
class InstallUser:
    name: str
    home: Path


def require_root(euid: Optional[int] = None) -> None:
    euid = os.geteuid() if euid is None else euid
    if euid != 0:
        raise DeployError("Please run this script with sudo or as root")


def _logname() -> Optional[str]:
    try:
        out = subprocess.run(["logname"], capture_output=True, text=True, check=True)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.stdout.strip() or None


def resolve_invoking_user(env: Optional[Mapping[str, str]] = None) -> InstallUser:
    """The non-root account the services should run as."""
    env = os.environ if env is None else env
    name = env.get("SUDO_USER") or _logname() or env.get("USER")
    if not name or name == "root":
        raise DeployError("Cannot determine non-root user. Please run with sudo instead of as root directly")
    try:
        home = Path(pwd.getpwnam(name).pw_dir)
    except KeyError:
        raise DeployError(f"User {name} does not exist")
    return InstallUser(name=name, home=home)


def is_wsl(proc_version: Path = Path("/proc/version")) -> bool:
    try:
        text = proc_version.read_text(encoding="utf-8", errors="ignore").lower()
    except OSError:
        return False
    return "microsoft" in text or "wsl" in text


def has_systemd(run_dir: Path = Path("/run/systemd/system")) -> bool:
    return run_dir.is_dir()
