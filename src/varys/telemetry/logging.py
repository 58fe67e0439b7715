"""Contract for runtime telemetry and structured logging sinks."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.console import Console
from rich.logging import RichHandler


class Telemetry(Protocol):
    """Reports operational events such as interaction starts and outcomes."""

    def emit(self, event_name: str, payload: dict) -> None:
        """Publish telemetry event to the configured sink."""


class LoggingTelemetry:
    """Telemetry sink that writes events to a standard logger."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("varys.telemetry")

    def emit(self, event_name: str, payload: dict) -> None:
        self._logger.info(event_name, extra={"payload": payload})


_RECORD_FIELDS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime"}


class ContextFormatter(logging.Formatter):
    """Formats the event name followed by the ``extra`` context as ``key=value`` pairs."""

    def formatMessage(self, record: logging.LogRecord) -> str:
        message = super().formatMessage(record)
        context = {key: value for key, value in record.__dict__.items() if key not in _RECORD_FIELDS}
        if not context:
            return message
        return message + " " + " ".join(f"{key}={value!r}" for key, value in context.items())


def configure_logging(level: str = "INFO") -> None:
    """Route all ``varys.*`` loggers to a rich console handler."""
    root = logging.getLogger("varys")
    root.setLevel(level.upper())
    if any(isinstance(handler, RichHandler) for handler in root.handlers):
        return

    handler = RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)
    handler.setFormatter(ContextFormatter("%(message)s"))
    root.addHandler(handler)
    root.propagate = False
