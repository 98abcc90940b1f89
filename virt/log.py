"""Logging setup for virt: stdlib loggers rendered by structlog.

Library modules log through ``logging.getLogger(__name__)``. This module puts
one stderr handler on the root logger, rendering every record with structlog,
either as colored console lines or (``--log-json``) as JSON lines. The
uvicorn loggers used by ``virt serve`` are routed through the same handler.
"""

from __future__ import annotations

import logging
import sys

import structlog

# Loggers whose own handlers are dropped so their records reach the root handler
_ADOPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _levels(verbose: bool, access_log: bool) -> dict[str, int]:
    debug_or_warning = logging.DEBUG if verbose else logging.WARNING
    return {
        "virt": debug_or_warning,
        "web": debug_or_warning,
        "uvicorn": logging.INFO,
        "uvicorn.error": logging.INFO,
        "uvicorn.access": logging.INFO if access_log else logging.WARNING,
        "httpx": logging.DEBUG if verbose else logging.WARNING,
        "httpcore": logging.WARNING,
    }


def _renderer(log_json: bool) -> structlog.types.Processor:
    if log_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(
    *,
    verbose: bool = False,
    log_json: bool = False,
    access_log: bool = False,
) -> None:
    """Install the structlog formatter and set per-logger levels.

    Args:
        verbose: DEBUG output for virt, the web app and httpx.
        log_json: One JSON object per line instead of console output.
        access_log: Emit uvicorn's per-request access lines.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *([structlog.processors.format_exc_info] if log_json else []),
                _renderer(log_json),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.WARNING)

    for name in _ADOPTED_LOGGERS:
        adopted = logging.getLogger(name)
        adopted.handlers.clear()
        adopted.propagate = True

    for name, level in _levels(verbose, access_log).items():
        logging.getLogger(name).setLevel(level)
