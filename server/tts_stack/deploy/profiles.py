"""Deployment recipes: which engine, which front end, which supervisor."""
from __future__ import annotations

import grp
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

import requests

from tts_stack.deploy import models
from tts_stack.deploy.environment import DeployError, InstallUser
from tts_stack.deploy.prompts import Answers
from tts_stack.deploy.services import ServiceManager, Unit
from tts_stack.deploy.system import CommandRunner
from tts_stack.deploy.templates import render, render_env

logger = logging.getLogger("tts_stack.deploy")

SAMPLE_TEXT = "سلام"
DEFAULT_PIPER_VOICE = "fa_IR-parsa-medium"
DEFAULT_COQUI_MODEL = "tts_models/fa/cv/tacotron2-DDC"
SERVE_PIPER_IMAGE = "ghcr.io/arunk140/serve-piper-tts:latest"
RHASSPY_PIPER_IMAGE = "rhasspy/piper:latest"


@dataclass
class InstallContext:
    runner: CommandRunner
    services: ServiceManager
    user: InstallUser
    answers: Answers
    voice: Optional[str] = None
    voice_url: Optional[str] = None
    model: Optional[str] = None
    package_spec: str = "tts-stack"
    skip_test: bool = False
    session: Optional[requests.Session] = None


def _reports_success(resp: requests.Response) -> bool:
    try:
        body = resp.json()
    except ValueError:
        # something other than the API answered on this port
        return False
    return isinstance(body, dict) and bool(body.get("success"))


def smoke_test(
    url: str,
    *,
    payload: Optional[dict] = None,
    attempts: int = 10,
    delay: float = 3.0,
    session: Optional[requests.Session] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Poll ``url`` until it answers 200 with a non-empty body, else raise DeployError."""
    session = session or requests.Session()
    last = "no response"
    for attempt in range(1, attempts + 1):
        try:
            if payload is None:
                resp = session.get(url, timeout=60)
            else:
                resp = session.post(url, json=payload, timeout=120)
        except requests.RequestException as exc:
            last = str(exc)
        else:
            last = f"HTTP status code: {resp.status_code}"
            if resp.status_code == 200 and resp.content:
                if payload is None or _reports_success(resp):
                    logger.info("TTS test successful (%d bytes)", len(resp.content))
                    return
                last = "reply did not report success"
        logger.info("Waiting for API to start (%d/%d)...", attempt, attempts)
        sleep(delay)
    raise DeployError(f"TTS test failed. {last}")


class Profile:
    name = ""
    description = ""
    defaults = Answers(host="localhost", api_port=5000, web_port=8000)
    packages: Dict[str, Optional[str]] = {}

    def install(self, ctx: InstallContext) -> List[str]:
        raise NotImplementedError

    # shared steps

    def install_packages(self, ctx: InstallContext) -> List[str]:
        probes = {pkg: cmd for pkg, cmd in self.packages.items() if cmd}
        return ctx.runner.ensure_packages(list(self.packages), probes)

    def ensure_docker(self, ctx: InstallContext, installed: List[str]) -> None:
        if "docker.io" in installed and ctx.services.systemd:
            ctx.runner.run(["systemctl", "enable", "--now", "docker"])
        elif "docker.io" in installed:
            ctx.runner.run(["service", "docker", "start"])
        try:
            members = grp.getgrnam("docker").gr_mem
        except KeyError:
            members = []
        if ctx.user.name not in members:
            logger.info("Adding %s to docker group...", ctx.user.name)
            ctx.runner.run(["usermod", "-aG", "docker", ctx.user.name])

    def fetch_voice(self, ctx: InstallContext, voice: str, dest: Path) -> None:
        ctx.runner.mkdir(dest, owner=ctx.user.name)
        if ctx.runner.dry_run:
            logger.info("Would download voice %s into %s", voice, dest)
            return
        models.download_piper_voice(voice, dest, base_url=ctx.voice_url, session=ctx.session)
        logger.info("Voice model and configuration downloaded successfully.")

    def make_venv(self, ctx: InstallContext, directory: Path, spec: str) -> Path:
        ctx.runner.mkdir(directory, owner=ctx.user.name)
        venv = directory / "venv"
        ctx.runner.run(["python3", "-m", "venv", str(venv)], as_user=ctx.user.name)
        pip = str(venv / "bin" / "pip")
        ctx.runner.run([pip, "install", "-U", "pip", "setuptools", "wheel"], as_user=ctx.user.name)
        ctx.runner.run([pip, "install", spec], as_user=ctx.user.name)
        return venv

    def replace_container(self, ctx: InstallContext, image: str, name: str, run_args: List[str]) -> None:
        ctx.runner.run(["docker", "pull", image])
        ctx.runner.run(["docker", "rm", "-f", name], check=False)
        # --restart=no: systemd owns restarts
        ctx.runner.run(["docker", "run", "-d", "--name", name, "--restart=no"] + run_args)

    def docker_unit(self, name: str, description: str) -> Unit:
        return Unit(
            name=name,
            content=render("docker.service", description=description, container=name),
            exec_start=["docker", "start", "-a", name],
        )

    def api_unit(self, ctx: InstallContext, name: str, description: str, venv: Path, workdir: Path,
                 env_file: Path, after: str = "network.target") -> Unit:
        exec_start = [str(venv / "bin" / "tts-stack"), "serve", "--env-file", str(env_file)]
        content = render(
            "api.service",
            description=description,
            after=after,
            user=ctx.user.name,
            workdir=workdir,
            exec_start=" ".join(exec_start),
        )
        return Unit(name=name, content=content, exec_start=exec_start, user=ctx.user.name)

    def run_smoke_test(self, ctx: InstallContext, url: str, payload: Optional[dict] = None) -> None:
        if ctx.skip_test or ctx.runner.dry_run:
            logger.info("Skipping TTS test")
            return
        smoke_test(url, payload=payload, session=ctx.session)


class CoquiApacheProfile(Profile):
    name = "coqui-apache"
    description = "Coqui TTS in a venv behind a PHP page served by Apache"
    defaults = Answers(host="localhost", api_port=5000, web_port=80)
    packages = {
        "python3-pip": "pip3",
        "python3-dev": None,
        "python3-venv": None,
        "ffmpeg": "ffmpeg",
        "libsndfile1": None,
        "git": "git",
        "apache2": "apache2",
        "php": "php",
        "libapache2-mod-php": None,
        "php-curl": None,
    }
    web_dir = Path("/var/www/html/tts")
    page_text = {
        "title": "متن به گفتار فارسی",
        "placeholder": "متن فارسی خود را اینجا وارد کنید...",
        "button_label": "تبدیل به گفتار",
        "empty_alert": "لطفاً یک متن وارد کنید.",
    }

    def install(self, ctx: InstallContext) -> List[str]:
        a, user = ctx.answers, ctx.user
        model = ctx.model or DEFAULT_COQUI_MODEL
        server_dir = user.home / "tts-server"

        logger.info("Installing system dependencies...")
        self.install_packages(ctx)

        logger.info("Installing TTS and dependencies...")
        venv = self.make_venv(ctx, server_dir, f"{ctx.package_spec}[coqui]")
        models_dir = server_dir / "models"
        ctx.runner.mkdir(models_dir, owner=user.name)
        logger.info("Downloading TTS model %s...", model)
        ctx.runner.run(models.coqui_prefetch_command(venv / "bin" / "python", model, models_dir), as_user=user.name)

        env_file = server_dir / "tts.env"
        ctx.runner.write_file(env_file, render_env({
            "TTS_ENGINE": "coqui",
            "API_HOST": "0.0.0.0",
            "API_PORT": a.api_port,
            "AUDIO_DIR": server_dir / "audio_files",
            "COQUI_MODEL": model,
            "TTS_HOME": models_dir,
            "LOG_DIR": server_dir / "logs",
        }), owner=user.name)
        ctx.services.install(self.api_unit(ctx, "tts-api", "TTS API Service", venv, server_dir, env_file))

        logger.info("Setting up web interface...")
        ctx.runner.mkdir(self.web_dir)
        ctx.runner.write_file(self.web_dir / "index.php", render("index.php", **self.page_text), owner="www-data")
        ctx.runner.write_file(
            self.web_dir / "tts_handler.php",
            render("tts_handler.php", api_port=a.api_port, server_domain=a.host),
            owner="www-data",
        )
        listen = "" if a.web_port == 80 else f"Listen {a.web_port}\n\n"
        ctx.runner.write_file(
            Path("/etc/apache2/sites-available/tts.conf"),
            render("apache-vhost.conf", listen=listen, web_port=a.web_port, server_name=a.host, web_dir=self.web_dir),
        )
        ctx.runner.run(["a2ensite", "tts.conf"])

        if ctx.runner.which("ufw"):
            ctx.runner.run(["ufw", "allow", f"{a.web_port}/tcp"])
            ctx.runner.run(["ufw", "allow", f"{a.api_port}/tcp"])
            logger.info("Firewall rules added for ports %s and %s", a.web_port, a.api_port)
        else:
            logger.warning("UFW firewall not detected. Please manually open ports %s and %s if needed",
                           a.web_port, a.api_port)

        logger.info("Starting services...")
        ctx.services.activate()
        ctx.services.restart("apache2")

        test_script = user.home / "test-tts.sh"
        ctx.runner.write_file(test_script, render("test-tts.sh", api_port=a.api_port, sample_text=SAMPLE_TEXT),
                              mode=0o755, owner=user.name)

        self.run_smoke_test(ctx, f"http://localhost:{a.api_port}/api/tts", payload={"text": SAMPLE_TEXT})
        port = "" if a.web_port == 80 else f":{a.web_port}"
        return [
            f"TTS API Server: http://{a.host}:{a.api_port}/api/tts",
            f"Web Interface: http://{a.host}{port}/",
            f"Test the API with: {test_script}",
            f"TTS server logs: {ctx.services.status_hint()}",
            "Apache logs: /var/log/apache2/tts_error.log",
        ]


class PiperDockerProfile(Profile):
    name = "piper-docker"
    description = "serve-piper-tts container plus a static page on python3 -m http.server"
    defaults = Answers(host="localhost", api_port=8080, web_port=8000)
    packages = {"docker.io": "docker", "curl": "curl", "python3": "python3"}
    container = "piper-tts-api"

    def install(self, ctx: InstallContext) -> List[str]:
        a, user = ctx.answers, ctx.user
        voice = ctx.voice or DEFAULT_PIPER_VOICE
        model_dir = user.home / "models"
        web_dir = user.home / "web_interface"

        logger.info("Checking and installing dependencies...")
        installed = self.install_packages(ctx)
        self.ensure_docker(ctx, installed)
        self.fetch_voice(ctx, voice, model_dir)

        logger.info("Starting TTS API container...")
        self.replace_container(ctx, SERVE_PIPER_IMAGE, self.container,
                               ["-p", f"{a.api_port}:8080", "-v", f"{model_dir}:/app/models", SERVE_PIPER_IMAGE])

        logger.info("Generating web interface...")
        ctx.runner.mkdir(web_dir, owner=user.name)
        ctx.runner.write_file(web_dir / "index.html",
                              render("index.html", host=a.host, api_port=a.api_port, voice=voice), owner=user.name)

        ctx.services.install(self.docker_unit(self.container, "Piper TTS API"))
        web_cmd = ["/usr/bin/python3", "-m", "http.server", "--directory", str(web_dir), str(a.web_port)]
        ctx.services.install(Unit(
            name="piper-tts-web",
            content=render("web.service", description="Piper TTS Web Interface",
                           after=f"network.target {self.container}.service", user=user.name,
                           web_dir=web_dir, exec_start=" ".join(web_cmd)),
            exec_start=web_cmd,
            user=user.name,
        ))
        ctx.services.activate()

        self.run_smoke_test(ctx, f"http://localhost:{a.api_port}/api/tts?text={SAMPLE_TEXT}&voice={voice}")
        return [
            f"Access the web interface at http://{a.host}:{a.web_port}",
            f"The web interface files are in {web_dir}",
            f"Service logs: {ctx.services.status_hint()}",
        ]


class PiperProxyProfile(Profile):
    name = "piper-proxy"
    description = "rhasspy/piper container behind the tts-stack API in remote mode"
    defaults = Answers(host="localhost", api_port=5000, web_port=8000)
    packages = {"docker.io": "docker", "python3": "python3", "python3-venv": None}
    container = "piper-tts"

    def install(self, ctx: InstallContext) -> List[str]:
        a, user = ctx.answers, ctx.user
        voice = ctx.voice or DEFAULT_PIPER_VOICE
        voice_dir = user.home / "piper-voices"
        web_dir = user.home / "tts-web"

        logger.info("Installing dependencies...")
        installed = self.install_packages(ctx)
        self.ensure_docker(ctx, installed)
        self.fetch_voice(ctx, voice, voice_dir)

        logger.info("Setting up Piper TTS API...")
        self.replace_container(ctx, RHASSPY_PIPER_IMAGE, self.container, [
            "-p", f"{a.api_port}:5000", "-v", f"{voice_dir}:/voices", RHASSPY_PIPER_IMAGE,
            "--port", "5000", "--model", f"/voices/{voice}.onnx",
        ])

        logger.info("Setting up web interface...")
        venv = self.make_venv(ctx, web_dir, ctx.package_spec)
        ctx.runner.write_file(web_dir / "index.html", render("proxy.html", sample_text=SAMPLE_TEXT, voice=voice),
                              owner=user.name)
        env_file = web_dir / "tts.env"
        ctx.runner.write_file(env_file, render_env({
            "TTS_ENGINE": "remote",
            "API_HOST": "0.0.0.0",
            "API_PORT": a.web_port,
            "BACKEND_URL": f"http://localhost:{a.api_port}",
            "BACKEND_PATH": "/synthesize",
            "PIPER_VOICE": voice,
            "AUDIO_DIR": web_dir / "audio_files",
            "WEB_DIR": web_dir,
            "LOG_DIR": web_dir / "logs",
        }), owner=user.name)

        ctx.services.install(self.docker_unit(self.container, "Piper TTS API"))
        ctx.services.install(self.api_unit(ctx, "tts-web", "TTS Web Interface", venv, web_dir, env_file,
                                           after=f"network.target {self.container}.service"))
        ctx.services.activate()

        self.run_smoke_test(ctx, f"http://localhost:{a.web_port}/api/tts?text={SAMPLE_TEXT}&voice={voice}")
        return [
            f"Access the web interface at http://{a.host}:{a.web_port}/demo",
            f"Service logs: {ctx.services.status_hint()}",
        ]


PROFILES: Dict[str, Profile] = {
    p.name: p for p in (CoquiApacheProfile(), PiperDockerProfile(), PiperProxyProfile())
}
