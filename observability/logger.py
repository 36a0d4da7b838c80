"""
observability/logger.py — Overlay Chat Structured Logger

Sets up structlog with:
  - JSON output to rotating log files
  - Human-readable output to console (dev mode) or JSON (prod mode)
  - Consistent fields on every log line: timestamp, level, event, logger

Usage:
    from observability.logger import get_logger, setup_logging

    setup_logging(level="DEBUG", log_dir="./data/logs")   # call once at startup
    log = get_logger(__name__)
    log.info("gateway.connected", url="http://localhost:8081")
    log.debug("gateway.message.dropped", reason="empty text")

Never log the bearer token. Bind `gateway_url` instead via bind_gateway().
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,   # 10 MB
    backup_count: int = 3,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          Log level string — DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for rotating log files.
        json_format:    If True, console also emits JSON (production mode).
                        If False, console uses coloured human-readable format (dev mode).
        console_output: Whether to emit logs to stdout at all.
        max_bytes:      Max size of each log file before rotation.
        backup_count:   Number of rotated log files to keep.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # ── Shared structlog processors ───────────────────────────────────────────
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    # ── File handler (always JSON) ────────────────────────────────────────────
    handlers: list[logging.Handler] = []

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_dir / "overlay_chat.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    handlers.append(file_handler)

    # ── Console handler (JSON or pretty) ─────────────────────────────────────
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

    # socketio / engineio are chatty at INFO; keep them one notch quieter
    for noisy in ("socketio", "engineio", "aiohttp"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    # ── Configure structlog ───────────────────────────────────────────────────
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )

    for handler in handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = "overlay_chat", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="presence")
        log.info("presence.updated", count=3)
        # → {"event": "presence.updated", "count": 3,
        #    "component": "presence", "logger": "gateway.presence", ...}
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_gateway(gateway_url: str) -> None:
    """Attach the gateway URL to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(gateway_url=gateway_url)


def clear_context() -> None:
    """Clear bound context vars (e.g. when the session ends)."""
    structlog.contextvars.clear_contextvars()
