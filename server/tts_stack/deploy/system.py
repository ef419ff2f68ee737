"""Running host commands and writing generated files."""
from __future__ import annotations

import logging
import os
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger("tts_stack.deploy")


class CommandRunner:
    """Executes installer commands, or only records them when ``dry_run`` is set.

    ``root`` is prefixed to every absolute path handed to :meth:`write_file`,
    so a whole deployment can be rendered into a staging directory.
    """

    def __init__(self, *, dry_run: bool = False, root: Optional[Path] = None) -> None:
        self.dry_run = dry_run
        self.root = Path(root) if root else None
        self.history: List[List[str]] = []

    def path(self, target: Path) -> Path:
        target = Path(target)
        if self.root is None:
            return target
        return self.root / target.relative_to(target.anchor)

    def run(
        self,
        cmd: Sequence[str],
        *,
        check: bool = True,
        as_user: Optional[str] = None,
        cwd: Optional[Path] = None,
    ) -> subprocess.CompletedProcess:
        argv = [str(part) for part in cmd]
        if as_user:
            argv = ["sudo", "-u", as_user, "-H"] + argv
        self.history.append(argv)
        logger.info("$ %s", shlex.join(argv))
        if self.dry_run:
            return subprocess.CompletedProcess(argv, 0, "", "")
        return subprocess.run(argv, check=check, cwd=cwd)

    def spawn(self, cmd: Sequence[str], *, log_path: Path) -> None:
        """Start a long-running command detached from this process (``nohup ... &``)."""
        argv = [str(part) for part in cmd]
        self.history.append(argv)
        logger.info("$ nohup %s &", shlex.join(argv))
        if self.dry_run:
            return
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "ab") as out:
            subprocess.Popen(argv, stdout=out, stderr=subprocess.STDOUT, stdin=subprocess.DEVNULL,
                             start_new_session=True)

    @staticmethod
    def which(command: str) -> Optional[str]:
        return shutil.which(command)

    def ensure_packages(self, packages: Iterable[str], commands: Optional[dict] = None) -> List[str]:
        """apt-get install whatever is missing.

        ``commands`` maps a package to the executable that proves it is
        installed; packages without such a probe are always requested.
        """
        commands = commands or {}
        missing = [pkg for pkg in packages if not (pkg in commands and self.which(commands[pkg]))]
        if not missing:
            logger.info("All required packages already installed")
            return []
        logger.info("Installing %s", " ".join(missing))
        self.run(["apt-get", "update"])
        self.run(["apt-get", "install", "-y"] + missing)
        return missing

    def mkdir(self, path: Path, owner: Optional[str] = None) -> Path:
        target = self.path(path)
        target.mkdir(parents=True, exist_ok=True)
        if owner:
            self._chown(target, owner)
        return target

    def write_file(self, path: Path, content: str, *, mode: int = 0o644, owner: Optional[str] = None) -> Path:
        target = self.path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
        os.chmod(target, mode)
        if owner:
            self._chown(target, owner)
        logger.info("Wrote %s", target)
        return target

    def _chown(self, target: Path, owner: str) -> None:
        if self.dry_run or self.root is not None:
            logger.debug("Skipping chown %s %s", owner, target)
            return
        shutil.chown(target, user=owner, group=owner)
