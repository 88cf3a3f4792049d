"""Fire-and-forget lifecycle event publishing."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Protocol

from loguru import logger

from app.models import utcnow

MARKET_CREATED = "market:created"
MARKET_UPDATED = "market:updated"
MARKET_RESOLVED = "market:resolved"


@dataclass(slots=True, frozen=True)
class LifecycleEvent:
    type: str
    data: dict[str, Any]
    published_at: datetime = field(default_factory=utcnow)


class EventPublisher(Protocol):
    def publish(self, event: LifecycleEvent) -> None:
        ...


class LoggingEventPublisher:
    """Default publisher when no bus is wired: the event only reaches the log."""

    def publish(self, event: LifecycleEvent) -> None:
        logger.info("Lifecycle event {} {}", event.type, event.data)


class InMemoryEventBus:
    """Thread-safe in-process bus; failing subscribers are logged and skipped."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[Callable[[LifecycleEvent], None]] = []
        self.history: list[LifecycleEvent] = []

    def subscribe(self, handler: Callable[[LifecycleEvent], None]) -> None:
        with self._lock:
            self._handlers.append(handler)

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            self.history.append(event)
            handlers = list(self._handlers)
        for handler in handlers:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                logger.exception("Lifecycle event handler {!r} failed for {}", handler, event.type)


def publish_safely(publisher: EventPublisher | None, event_type: str, **data: Any) -> None:
    """Publish without letting delivery problems leak into the caller."""
    if publisher is None:
        return
    try:
        publisher.publish(LifecycleEvent(type=event_type, data=data))
    except Exception:  # noqa: BLE001
        logger.exception("Failed to publish lifecycle event {}", event_type)
