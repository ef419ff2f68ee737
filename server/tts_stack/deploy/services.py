"""systemd unit management, with a detached-process fallback for hosts without systemd."""
from __future__ import annotations

import logging
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from tts_stack.deploy.system import CommandRunner

logger = logging.getLogger("tts_stack.deploy")

UNIT_DIR = Path("/etc/systemd/system")


@dataclass
class Unit:
    name: str
    content: str
    exec_start: Sequence[str]
    user: Optional[str] = None

    @property
    def filename(self) -> str:
        return self.name if self.name.endswith(".service") else f"{self.name}.service"


class ServiceManager:
    def __init__(self, runner: CommandRunner, *, systemd: bool = True, log_dir: Path = Path("/var/log/tts-stack")) -> None:
        self.runner = runner
        self.systemd = systemd
        self.log_dir = log_dir
        self.units: List[Unit] = []

    def install(self, unit: Unit) -> Path:
        path = self.runner.write_file(UNIT_DIR / unit.filename, unit.content)
        self.units.append(unit)
        return path

    def activate(self) -> None:
        """Reload, enable and start every unit installed so far."""
        if not self.systemd:
            logger.warning("systemd is not running (WSL?); starting services directly, they will not survive a reboot")
            for unit in self.units:
                cmd = list(unit.exec_start)
                if unit.user:
                    cmd = ["sudo", "-u", unit.user, "-H"] + cmd
                self.runner.spawn(cmd, log_path=self.log_dir / f"{unit.name}.log")
            return
        self.runner.run(["systemctl", "daemon-reload"])
        for unit in self.units:
            self.runner.run(["systemctl", "enable", unit.filename])
            self.runner.run(["systemctl", "restart", unit.filename])

    def restart(self, name: str) -> None:
        if self.systemd:
            self.runner.run(["systemctl", "restart", name])
        else:
            self.runner.run(["service", name, "restart"])

    def status_hint(self) -> str:
        if not self.systemd:
            return f"Service output is in {self.log_dir}"
        return "; ".join(f"journalctl -u {shlex.quote(u.filename)}" for u in self.units)
