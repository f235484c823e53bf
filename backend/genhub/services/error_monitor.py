"""Error monitor hook for provider and internal failures."""

from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class ErrorMonitor(Protocol):
    async def log_error(
        self,
        level: str,
        source: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None: ...


class LoggingErrorMonitor:
    """Default monitor: writes to the ``genhub.errors`` logger."""

    def __init__(self, logger_name: str = "genhub.errors") -> None:
        self._logger = logging.getLogger(logger_name)

    async def log_error(
        self,
        level: str,
        source: str,
        message: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        self._logger.log(
            _LEVELS.get(level.upper(), logging.ERROR),
            "[%s] %s %s", source, message, context or {},
        )


async def report_error(
    monitor: ErrorMonitor | None,
    source: str,
    message: str,
    context: dict[str, Any] | None = None,
) -> None:
    """Forward to ``monitor``; a failing monitor never fails the request."""
    if monitor is None:
        return
    try:
        await monitor.log_error("ERROR", source, message, context)
    except Exception as e:
        logger.warning("Failed to log error to monitor: %s", e)
