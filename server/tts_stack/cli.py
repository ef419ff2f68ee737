"""Command line entry point: ``tts-stack serve`` and ``tts-stack install <profile>``."""
from __future__ import annotations

import argparse
import subprocess
import sys
from pathlib import Path
from typing import Iterable, Optional

from dotenv import load_dotenv

from tts_stack.deploy.environment import (
    DeployError,
    has_systemd,
    is_wsl,
    require_root,
    resolve_invoking_user,
)
from tts_stack.deploy.profiles import PROFILES, InstallContext
from tts_stack.deploy.prompts import collect_answers
from tts_stack.deploy.services import ServiceManager
from tts_stack.deploy.system import CommandRunner
from tts_stack.logging_setup import ConsoleFormatter, get_logger

DEFAULT_STAGING = Path("tts-stack-staging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tts-stack", description="Text-to-speech API and installer")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the TTS HTTP API")
    serve.add_argument("--env-file", type=Path, help="Read settings from this file before the environment")
    serve.add_argument("--host", help="Override API_HOST")
    serve.add_argument("--port", type=int, help="Override API_PORT")

    recipes = "\n".join(f"  {name}: {p.description}" for name, p in sorted(PROFILES.items()))
    install = sub.add_parser(
        "install",
        help="Install a TTS backend, web front end and services",
        epilog=f"profiles:\n{recipes}",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    install.add_argument("profile", choices=sorted(PROFILES), help="Deployment recipe")
    install.add_argument("--host", help="Server IP address or domain name")
    install.add_argument("--api-port", help="Port for the TTS API")
    install.add_argument("--web-port", help="Port for the web interface")
    install.add_argument("--voice", help="Piper voice id, e.g. fa_IR-parsa-medium")
    install.add_argument("--voice-url", help="Base URL holding <voice>.onnx and <voice>.onnx.json")
    install.add_argument("--model", help="Coqui model name")
    install.add_argument("--package", default="tts-stack", help="pip requirement used for the service venv")
    install.add_argument("--user", help="Account the services run as (default: the sudo caller)")
    install.add_argument("-y", "--yes", action="store_true", help="Accept defaults instead of prompting")
    install.add_argument("--dry-run", action="store_true", help="Log commands instead of running them")
    install.add_argument("--root", type=Path, help="Write generated files under this staging directory")
    install.add_argument("--skip-test", action="store_true", help="Do not call the API after installing")
    return parser


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    from tts_stack.config import Settings
    from tts_stack.main import create_app

    if args.env_file:
        load_dotenv(args.env_file)
    settings = Settings.from_env()
    if args.host:
        settings.host = args.host
    if args.port:
        settings.port = args.port
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
    return 0


def install(args: argparse.Namespace) -> int:
    logger = get_logger("tts_stack", console=ConsoleFormatter(color=sys.stderr.isatty()))
    profile = PROFILES[args.profile]
    try:
        if not args.dry_run:
            require_root()
        if args.user:
            user = resolve_invoking_user({"SUDO_USER": args.user})
        else:
            user = resolve_invoking_user()
        logger.info("Running %s for user: %s (home: %s)", profile.name, user.name, user.home)

        systemd = has_systemd()
        if is_wsl():
            logger.info("WSL detected%s", "" if systemd else " without systemd")

        answers = collect_answers(
            profile.defaults,
            host=args.host,
            api_port=args.api_port,
            web_port=args.web_port,
            interactive=not args.yes,
        )
        root = args.root or (DEFAULT_STAGING if args.dry_run else None)
        runner = CommandRunner(dry_run=args.dry_run, root=root)
        ctx = InstallContext(
            runner=runner,
            services=ServiceManager(runner, systemd=systemd),
            user=user,
            answers=answers,
            voice=args.voice,
            voice_url=args.voice_url,
            model=args.model,
            package_spec=args.package,
            skip_test=args.skip_test,
        )
        summary = profile.install(ctx)
    except (DeployError, subprocess.CalledProcessError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.error("Aborted")
        return 130

    logger.info("Setup complete!")
    for line in summary:
        logger.info("%s", line)
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_parser().parse_args(None if argv is None else list(argv))
    if args.command == "serve":
        return serve(args)
    return install(args)


if __name__ == "__main__":
    sys.exit(main())
