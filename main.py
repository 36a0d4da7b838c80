"""
main.py — Overlay Chat Entry Point

Usage:
    python main.py                          # terminal chat, default settings
    python main.py --env prod               # use the production gateway
    python main.py --url http://host:8081   # explicit gateway URL
    python main.py --token "$HOST_JWT"      # skip the token prompt
    python main.py --log-level DEBUG        # verbose logging
    python main.py --config path/to/config.yaml
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root explicitly, before settings are built
ENV_PATH = Path(__file__).parent / ".env"
load_dotenv(dotenv_path=ENV_PATH)

import argparse
import asyncio
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="overlay-chat",
        description="Overlay Chat — realtime chat gateway client",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $OVERLAY_CHAT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--env",
        choices=["local", "prod"],
        default=None,
        help="Gateway environment (overrides gateway.env)",
    )
    parser.add_argument(
        "--url",
        default=None,
        help="Gateway base URL (overrides gateway.env and gateway.base_url)",
    )
    parser.add_argument(
        "--token",
        default=None,
        help="Host token; defaults to $CHAT_GATEWAY_TOKEN, else prompts",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, apply CLI overrides, validate fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if config is invalid.
    """
    from config.settings import ConfigError, GatewayConfig, load_settings
    from observability.logger import get_logger, setup_logging
    from pydantic import ValidationError

    try:
        settings = load_settings(args.config)
        if args.env:
            settings.gateway = GatewayConfig.model_validate(
                {**settings.gateway.model_dump(), "env": args.env, "base_url": None}
            )
        if args.url:
            settings.gateway_url_override = args.url
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {e['loc'][-1] if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_json_format,
        console_output=settings.log_console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("overlay_chat.main")
    return settings, log


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)

    from observability.logger import bind_gateway, clear_context
    bind_gateway(settings.gateway_url)
    log.info("overlay_chat.starting", env=settings.gateway.env, path=settings.gateway.path)

    from interfaces.chat_cli import run_chat_cli
    try:
        return await run_chat_cli(settings, log, token=args.token)
    except KeyboardInterrupt:
        log.info("overlay_chat.interrupted")
        return 130
    finally:
        log.info("overlay_chat.stopped")
        clear_context()


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
