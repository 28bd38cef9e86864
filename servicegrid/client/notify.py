"""Toast-style user notifications raised by mutations."""

from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger(__name__)


class Notifier(Protocol):
    def success(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class LogNotifier:
    """Default notifier: toasts become structured log lines."""

    def success(self, message: str) -> None:
        logger.info("toast_success", message=message)

    def error(self, message: str) -> None:
        logger.warning("toast_error", message=message)


class RecordingNotifier:
    """Keeps every toast in memory, for headless callers and tests."""

    def __init__(self) -> None:
        self.successes: list[str] = []
        self.errors: list[str] = []

    def success(self, message: str) -> None:
        self.successes.append(message)

    def error(self, message: str) -> None:
        self.errors.append(message)
