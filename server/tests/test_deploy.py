"""Installer checks, prompts, templates and dry-run profiles."""
from __future__ import annotations

import os
from pathlib import Path

import pytest
import requests

from tts_stack.cli import main
from tts_stack.deploy import environment, models, profiles
from tts_stack.deploy.environment import DeployError, InstallUser
from tts_stack.deploy.profiles import PROFILES, InstallContext, smoke_test
from tts_stack.deploy.prompts import Answers, collect_answers, validate_port
from tts_stack.deploy.services import ServiceManager, Unit
from tts_stack.deploy.system import CommandRunner
from tts_stack.deploy.templates import render, render_env


@pytest.mark.parametrize("value", ["1", "8080", "65535", 443])
def test_validate_port_accepts(value) -> None:
    assert validate_port(value) == int(value)


@pytest.mark.parametrize("value", ["0", "65536", "-1", "80a", "", "８０"])
def test_validate_port_rejects(value) -> None:
    with pytest.raises(DeployError, match="Invalid port number"):
        validate_port(value)


def test_collect_answers_prompts_with_defaults() -> None:
    replies = iter(["tts.example.org", "", "9000"])
    questions = []

    def fake_input(question: str) -> str:
        questions.append(question)
        return next(replies)

    answers = collect_answers(Answers("localhost", 5000, 8000), input_fn=fake_input)
    assert answers == Answers("tts.example.org", 5000, 9000)
    assert "default: localhost" in questions[0]


def test_collect_answers_flags_skip_prompts() -> None:
    def no_input(question: str) -> str:
        raise AssertionError("should not prompt")

    answers = collect_answers(Answers("localhost", 5000, 8000), host="10.0.0.2", api_port="5001",
                              web_port=None, interactive=False, input_fn=no_input)
    assert answers == Answers("10.0.0.2", 5001, 8000)


def test_require_root() -> None:
    environment.require_root(euid=0)
    with pytest.raises(DeployError, match="sudo"):
        environment.require_root(euid=1000)


def test_resolve_invoking_user_refuses_root(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(environment, "_logname", lambda: None)
    with pytest.raises(DeployError):
        environment.resolve_invoking_user({"USER": "root"})


def test_resolve_invoking_user_unknown() -> None:
    with pytest.raises(DeployError, match="does not exist"):
        environment.resolve_invoking_user({"SUDO_USER": "no-such-user-tts"})


def test_is_wsl(tmp_path: Path) -> None:
    version = tmp_path / "version"
    version.write_text("Linux version 5.15.90.1-microsoft-standard-WSL2", encoding="utf-8")
    assert environment.is_wsl(version)
    version.write_text("Linux version 6.1.0-18-amd64 (debian-kernel@lists.debian.org)", encoding="utf-8")
    assert not environment.is_wsl(version)
    assert not environment.is_wsl(tmp_path / "missing")


def test_render_keeps_dollar_signs() -> None:
    php = render("tts_handler.php", api_port=5000, server_domain="tts.example.org")
    assert "$curl = curl_init('http://localhost:5000/api/tts');" in php
    assert "'http://tts.example.org:5000/api/audio/' . $result['filename']" in php
    vhost = render("apache-vhost.conf", listen="", web_port=80, server_name="tts.example.org",
                   web_dir="/var/www/html/tts")
    assert "${APACHE_LOG_DIR}/tts_error.log" in vhost
    assert vhost.startswith("<VirtualHost *:80>")


def test_render_missing_value() -> None:
    with pytest.raises(KeyError):
        render("index.html", host="localhost")
    with pytest.raises(KeyError):
        render("nginx.conf")


def test_render_env_quotes() -> None:
    text = render_env({"TTS_ENGINE": "coqui", "WEB_DIR": "/srv/my web", "EMPTY": None})
    assert text == 'TTS_ENGINE=coqui\nWEB_DIR="/srv/my web"\nEMPTY=\n'


def test_command_runner_dry_run_and_staging(tmp_path: Path) -> None:
    runner = CommandRunner(dry_run=True, root=tmp_path)
    result = runner.run(["systemctl", "daemon-reload"])
    assert result.returncode == 0
    runner.run(["pip", "install", "x"], as_user="alice")
    assert runner.history == [["systemctl", "daemon-reload"], ["sudo", "-u", "alice", "-H", "pip", "install", "x"]]

    written = runner.write_file(Path("/etc/systemd/system/x.service"), "[Unit]\n", mode=0o600)
    assert written == tmp_path / "etc/systemd/system/x.service"
    assert written.read_text() == "[Unit]\n"
    assert oct(os.stat(written).st_mode & 0o777) == oct(0o600)


def test_ensure_packages_only_missing(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CommandRunner(dry_run=True, root=tmp_path)
    monkeypatch.setattr(CommandRunner, "which", staticmethod(lambda cmd: "/usr/bin/curl" if cmd == "curl" else None))
    missing = runner.ensure_packages(["curl", "docker.io", "libsndfile1"], {"curl": "curl", "docker.io": "docker"})
    assert missing == ["docker.io", "libsndfile1"]
    assert runner.history[-1] == ["apt-get", "install", "-y", "docker.io", "libsndfile1"]


def test_services_fallback_without_systemd(tmp_path: Path) -> None:
    runner = CommandRunner(dry_run=True, root=tmp_path)
    services = ServiceManager(runner, systemd=False)
    services.install(Unit("tts-web", "[Unit]\n", ["/usr/bin/python3", "-m", "http.server", "8000"], user="alice"))
    services.activate()
    assert runner.history == [["sudo", "-u", "alice", "-H", "/usr/bin/python3", "-m", "http.server", "8000"]]


class FakeResponse:
    def __init__(self, status_code=200, content=b"RIFF", payload=None):
        self.status_code = status_code
        self.content = content
        self._payload = payload or {}

    def json(self):
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=65536):
        yield self.content

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return None


class FakeSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.urls = []

    def _next(self, url):
        self.urls.append(url)
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        return self._next(url)

    def post(self, url, **kwargs):
        return self._next(url)


def test_smoke_test_waits_for_api() -> None:
    session = FakeSession([requests.ConnectionError("refused"), FakeResponse(503, b""), FakeResponse()])
    sleeps = []
    smoke_test("http://localhost:8080/api/tts?text=x", session=session, sleep=sleeps.append, delay=1)
    assert len(session.urls) == 3
    assert sleeps == [1, 1]


def test_smoke_test_gives_up() -> None:
    session = FakeSession([FakeResponse(500, b"")] * 3)
    with pytest.raises(DeployError, match="500"):
        smoke_test("http://localhost/api/tts", attempts=3, session=session, sleep=lambda _: None)


def test_smoke_test_post_needs_success() -> None:
    session = FakeSession([FakeResponse(payload={"success": True, "filename": "a.wav"})])
    smoke_test("http://localhost/api/tts", payload={"text": "x"}, session=session, sleep=lambda _: None)


def test_smoke_test_post_rejects_non_json_reply() -> None:
    class AudioReply(FakeResponse):
        def json(self):
            raise requests.exceptions.JSONDecodeError("Expecting value", "RIFF", 0)

    session = FakeSession([AudioReply(content=b"RIFF...."), FakeResponse(payload={"success": False})])
    with pytest.raises(DeployError, match="did not report success"):
        smoke_test("http://localhost/api/tts", payload={"text": "x"}, attempts=2, session=session, sleep=lambda _: None)
    assert len(session.urls) == 2


def test_download_piper_voice(tmp_path: Path) -> None:
    (tmp_path / "fa_IR-parsa-medium.onnx").write_bytes(b"model")
    session = FakeSession([FakeResponse(content=b'{"audio": {}}')])
    files = models.download_piper_voice("fa_IR-parsa-medium", tmp_path, session=session)
    assert [f.name for f in files] == ["fa_IR-parsa-medium.onnx", "fa_IR-parsa-medium.onnx.json"]
    assert session.urls == [
        "https://huggingface.co/rhasspy/piper-voices/resolve/main/fa/fa_IR/parsa/medium/fa_IR-parsa-medium.onnx.json"
    ]


def test_download_rejects_empty_body(tmp_path: Path) -> None:
    session = FakeSession([FakeResponse(content=b"")])
    with pytest.raises(DeployError, match="empty"):
        models.download_file("http://x/v.onnx", tmp_path / "v.onnx", session=session)
    assert not (tmp_path / "v.onnx").exists()
    assert not (tmp_path / "v.onnx.part").exists()


def test_download_http_error(tmp_path: Path) -> None:
    session = FakeSession([FakeResponse(404)])
    with pytest.raises(DeployError, match="Failed to download"):
        models.download_file("http://x/v.onnx", tmp_path / "v.onnx", session=session)


def _context(tmp_path: Path, profile: str, systemd: bool = True) -> InstallContext:
    runner = CommandRunner(dry_run=True, root=tmp_path / "stage")
    return InstallContext(
        runner=runner,
        services=ServiceManager(runner, systemd=systemd),
        user=InstallUser("alice", Path("/home/alice")),
        answers=PROFILES[profile].defaults,
    )


def test_coqui_apache_profile(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(CommandRunner, "which", staticmethod(lambda cmd: None))
    ctx = _context(tmp_path, "coqui-apache")
    summary = PROFILES["coqui-apache"].install(ctx)
    stage = tmp_path / "stage"

    unit = (stage / "etc/systemd/system/tts-api.service").read_text()
    assert "User=alice" in unit
    assert "ExecStart=/home/alice/tts-server/venv/bin/tts-stack serve --env-file /home/alice/tts-server/tts.env" in unit
    env = (stage / "home/alice/tts-server/tts.env").read_text()
    assert "TTS_ENGINE=coqui" in env and "API_PORT=5000" in env
    assert (stage / "var/www/html/tts/index.php").is_file()
    assert "localhost:5000/api/tts" in (stage / "var/www/html/tts/tts_handler.php").read_text()
    assert (stage / "etc/apache2/sites-available/tts.conf").is_file()
    assert os.access(stage / "home/alice/test-tts.sh", os.X_OK)

    history = ctx.runner.history
    assert ["a2ensite", "tts.conf"] in history
    assert ["systemctl", "enable", "tts-api.service"] in history
    assert ["systemctl", "restart", "apache2"] in history
    assert any(cmd[-1] == "tts-stack[coqui]" for cmd in history)
    assert not any(cmd[0] == "ufw" for cmd in history)
    assert summary[0] == "TTS API Server: http://localhost:5000/api/tts"


def test_piper_docker_profile(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(CommandRunner, "which", staticmethod(lambda cmd: "/usr/bin/" + cmd))
    ctx = _context(tmp_path, "piper-docker")
    ctx.answers = Answers("tts.example.org", 8081, 8001)
    PROFILES["piper-docker"].install(ctx)
    stage = tmp_path / "stage"

    html = (stage / "home/alice/web_interface/index.html").read_text()
    assert "http://tts.example.org:8081/api/tts?text=" in html
    assert "voice=fa_IR-parsa-medium" in html
    assert "docker start -a piper-tts-api" in (stage / "etc/systemd/system/piper-tts-api.service").read_text()
    web = (stage / "etc/systemd/system/piper-tts-web.service").read_text()
    assert "http.server --directory /home/alice/web_interface 8001" in web

    history = ctx.runner.history
    assert not any(cmd[0] == "apt-get" for cmd in history)
    assert ["docker", "rm", "-f", "piper-tts-api"] in history
    run = next(cmd for cmd in history if cmd[:2] == ["docker", "run"])
    assert "8081:8080" in run and profiles.SERVE_PIPER_IMAGE in run


def test_piper_proxy_profile_without_systemd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(CommandRunner, "which", staticmethod(lambda cmd: "/usr/bin/" + cmd))
    ctx = _context(tmp_path, "piper-proxy", systemd=False)
    ctx.voice = "en_US-amy-low"
    summary = PROFILES["piper-proxy"].install(ctx)
    stage = tmp_path / "stage"

    env = (stage / "home/alice/tts-web/tts.env").read_text()
    assert "TTS_ENGINE=remote" in env
    assert "BACKEND_URL=http://localhost:5000" in env
    assert "PIPER_VOICE=en_US-amy-low" in env
    assert '"en_US-amy-low"' in (stage / "home/alice/tts-web/index.html").read_text()

    history = ctx.runner.history
    assert not any(cmd[0] == "systemctl" for cmd in history)
    assert ["sudo", "-u", "alice", "-H", "/home/alice/tts-web/venv/bin/tts-stack", "serve",
            "--env-file", "/home/alice/tts-web/tts.env"] in history
    run = next(cmd for cmd in history if cmd[:2] == ["docker", "run"])
    assert run[-2:] == ["--model", "/voices/en_US-amy-low.onnx"]
    assert summary[0].endswith(":8000/demo")


def test_cli_install_dry_run(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "tts_stack.cli.resolve_invoking_user", lambda env=None: InstallUser("alice", Path("/home/alice"))
    )
    monkeypatch.setattr(CommandRunner, "which", staticmethod(lambda cmd: "/usr/bin/" + cmd))
    code = main(["install", "piper-docker", "--yes", "--dry-run", "--root", str(tmp_path)])
    assert code == 0
    assert (tmp_path / "home/alice/web_interface/index.html").is_file()


def test_cli_install_bad_port(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "tts_stack.cli.resolve_invoking_user", lambda env=None: InstallUser("alice", Path("/home/alice"))
    )
    code = main(["install", "piper-docker", "--yes", "--dry-run", "--root", str(tmp_path), "--api-port", "70000"])
    assert code == 1
