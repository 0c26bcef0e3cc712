"""Contract for runtime telemetry plus the logging sink it defaults to."""

from __future__ import annotations

import logging
from typing import Protocol

from rich.logging import RichHandler

_configured = False


class Telemetry(Protocol):
    """Reports operational events and assistant outcomes."""

    def emit(self, event_name: str, payload: dict) -> None:
        """Publish telemetry event to the configured sink."""


class LoggingTelemetry:
    """Telemetry sink that writes each event as a structured log record."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger("voice_assistant.telemetry")

    def emit(self, event_name: str, payload: dict) -> None:
        self._logger.info(event_name, extra={"telemetry": payload})


def configure_logging(level: str = "INFO") -> None:
    """Install a rich console handler on the root logger; later calls only adjust the level."""
    global _configured
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return

    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    _configured = True
