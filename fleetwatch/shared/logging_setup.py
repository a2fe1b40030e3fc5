"""
FleetWatch - Logging Setup

Installs a handler on the ``fleetwatch`` logger according to
``config.logging``. Modules log through ``logging.getLogger(__name__)`` and
pass structured context via ``extra=``. The JSON formatter renders those
records through structlog's processor chain, with every ``extra=`` field as
a top-level key.

Usage:
    from fleetwatch.shared.logging_setup import configure_logging

    configure_logging()  # uses get_config()
"""

from __future__ import annotations

import logging
from typing import Any

import structlog

from fleetwatch.shared.config import Settings, get_config

ROOT_LOGGER_NAME = "fleetwatch"

# Attributes present on every LogRecord; anything else came from ``extra=``.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", None, None)).keys() | {"message", "asctime"}
)


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JsonFormatter(structlog.stdlib.ProcessorFormatter):
    """One JSON object per line, with ``extra=`` context flattened in."""

    def __init__(self, include_timestamp: bool = True):
        pre_chain: list[Any] = [
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.ExtraAdder(),
        ]
        if include_timestamp:
            pre_chain.append(structlog.processors.TimeStamper(fmt="iso", utc=True))

        super().__init__(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.EventRenamer("message"),
                structlog.processors.JSONRenderer(default=str),
            ],
        )
        self.include_timestamp = include_timestamp


class TextFormatter(logging.Formatter):
    """Plain text with ``extra=`` context appended as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = _extra_fields(record)
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in extras.items())
        return line


def configure_logging(config: Settings | None = None) -> logging.Logger:
    """
    Configure the ``fleetwatch`` logger.

    Replaces any handler installed by a previous call, so it is safe to call
    more than once (e.g. after ``reload_config``).

    Args:
        config: Configuration object (uses default if not provided)

    Returns:
        The configured package logger
    """
    config = config or get_config()
    log_config = config.logging

    if log_config.format == "json":
        formatter: logging.Formatter = JsonFormatter(log_config.include_timestamp)
    else:
        fmt = "%(levelname)s %(name)s - %(message)s"
        if log_config.include_timestamp:
            fmt = "%(asctime)s " + fmt
        formatter = TextFormatter(fmt)

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(log_config.level.upper())

    return logger
