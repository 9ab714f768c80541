"""structlog configuration for the CLI."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from couchsnap.config.models import LogFormat


def configure_logging(
    level: str = "INFO", fmt: LogFormat = LogFormat.CONSOLE
) -> None:
    """Route structlog through stdlib logging on stderr.

    stdout is kept free for the snapshot/checkpoint filenames that operators
    script around.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )
    processors: list[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if fmt == LogFormat.JSON:
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )
