"""
observability/logger.py — Bridge logging

structlog on top of stdlib logging. The rotating file always gets JSON; the
console gets JSON or the coloured dev renderer depending on json_format.
Per-connection fields (connection_id, remote) come from contextvars, so the
gateway binds them once per WebSocket and every loop of that connection
inherits them.

    setup_logging(level="DEBUG", log_dir="./data/logs", json_format=False)
    log = get_logger(__name__)
    log.info("upstream.connected", host="127.0.0.1", port=12090)
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

import structlog

LOG_FILE_NAME = "throttle-bridge.log"

# Libraries whose INFO output is per-handshake noise for the bridge
_NOISY_LOGGERS = ("websockets", "asyncio")

_PRE_CHAIN: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def _formatter(renderer: Any) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=_PRE_CHAIN,
    )


def setup_logging(
    level: str = "INFO",
    log_dir: str | Path = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    """Configure stdlib handlers and structlog. Safe to call again (tests do)."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        log_path / LOG_FILE_NAME,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    handlers: list[logging.Handler] = [file_handler]

    if console_output:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_formatter(
            structlog.processors.JSONRenderer()
            if json_format
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        ))
        handlers.append(console)

    logging.basicConfig(level=numeric_level, handlers=handlers, force=True)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    structlog.configure(
        processors=_PRE_CHAIN + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = "throttle_bridge", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    logger = structlog.get_logger(name)
    return logger.bind(**initial_values) if initial_values else logger


def bind_connection(connection_id: str, remote: str) -> None:
    """Attach connection_id/remote to every log line in the current context."""
    structlog.contextvars.bind_contextvars(connection_id=connection_id, remote=remote)


def clear_connection() -> None:
    structlog.contextvars.unbind_contextvars("connection_id", "remote")
