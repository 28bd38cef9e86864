"""In-process fan-out bus for client-side events such as ``business-updated``."""

from __future__ import annotations

import contextlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

BUSINESS_UPDATED = "business-updated"


@dataclass
class ClientEvent:
    """A single named client event."""

    type: str
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0

    def __post_init__(self) -> None:
        if self.timestamp == 0.0:
            self.timestamp = time.monotonic()


EventHandler = Callable[[ClientEvent], None]


class ClientEventBus:
    """Synchronous fan-out keyed by event type.

    Designed for a single asyncio event loop; handlers run inline on dispatch.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self._last: dict[str, ClientEvent] = {}

    def dispatch(self, event: ClientEvent) -> None:
        self._last[event.type] = event
        for handler in list(self._handlers.get(event.type, [])):
            try:
                handler(event)
            except Exception:
                # One broken listener must not stop the others
                logger.exception("client_event_handler_failed", event_type=event.type)

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        self._handlers.setdefault(event_type, []).append(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            with contextlib.suppress(ValueError):
                handlers.remove(handler)
            if not handlers and event_type in self._handlers:
                del self._handlers[event_type]

        return _unsubscribe

    def last(self, event_type: str) -> ClientEvent | None:
        """Return the most recent event of this type, or None."""
        return self._last.get(event_type)
