"""
In-process publish/subscribe for sync lifecycle events.

Decouples the sync service from its consumers (cache invalidation,
notifications to the chat layer, logging).

Usage:
    from gamesync.events import events, SyncEvent

    @events.on(SyncEvent.ACCOUNT_SYNCED)
    async def handle_synced(data: dict):
        print(f"{data['account_id']}: {data['count']} games")

    await events.emit(SyncEvent.ACCOUNT_SYNCED, {"account_id": "...", "count": 12})
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Coroutine, Dict, List, Optional

from gamesync.observability import get_correlation_id, get_logger

logger = get_logger(__name__)

EventHandler = Callable[[Dict[str, Any]], Coroutine[Any, Any, None]]


class SyncEvent(Enum):
    """Events emitted by the sync service."""

    ACCOUNT_LINKED = "account.linked"
    ACCOUNT_SYNCED = "account.synced"
    ACCOUNT_SYNC_FAILED = "account.sync_failed"

    BULK_SYNC_STARTED = "bulk_sync.started"
    BULK_SYNC_COMPLETED = "bulk_sync.completed"

    CACHE_INVALIDATED = "cache.invalidated"


@dataclass
class Event:
    """Event payload plus metadata."""

    type: SyncEvent
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=datetime.now)
    correlation_id: Optional[str] = field(default_factory=get_correlation_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
        }


class EventBus:
    """
    Async event bus.

    Handlers for one event run concurrently; a failing handler is logged
    and never affects the other handlers or the emitter.
    """

    def __init__(self, max_history: int = 100):
        self._handlers: Dict[SyncEvent, List[EventHandler]] = {}
        self._wildcard_handlers: List[EventHandler] = []
        self._history: List[Event] = []
        self._max_history = max_history

    def on(self, event_type: Optional[SyncEvent] = None) -> Callable[[EventHandler], EventHandler]:
        """
        Decorator to register a handler; None subscribes to every event.
        """
        def decorator(handler: EventHandler) -> EventHandler:
            self.subscribe(event_type, handler)
            return handler

        return decorator

    def subscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> None:
        if event_type is None:
            self._wildcard_handlers.append(handler)
        else:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Optional[SyncEvent], handler: EventHandler) -> bool:
        """
        Returns:
            True if handler was found and removed
        """
        handlers = self._wildcard_handlers if event_type is None else self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def emit(self, event_type: SyncEvent, data: Optional[Dict[str, Any]] = None) -> Event:
        """Emit an event to all subscribed handlers and wait for them."""
        event = Event(type=event_type, data=data or {})

        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = list(self._handlers.get(event_type, []))
        handlers.extend(self._wildcard_handlers)
        if not handlers:
            return event

        results = await asyncio.gather(
            *[handler(event.data) for handler in handlers],
            return_exceptions=True,
        )

        for handler, result in zip(handlers, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Handler {handler.__name__} failed for {event_type.value}: {result}",
                    extra={"event": event.to_dict()},
                )

        return event

    def get_history(self, event_type: Optional[SyncEvent] = None, limit: int = 20) -> List[Dict[str, Any]]:
        """Recent events, oldest first."""
        history = self._history
        if event_type:
            history = [e for e in history if e.type == event_type]
        return [e.to_dict() for e in history[-limit:]]

    def clear_handlers(self) -> None:
        """Remove all handlers (useful for testing)."""
        self._handlers.clear()
        self._wildcard_handlers.clear()

    def clear_history(self) -> None:
        self._history.clear()


# Global event bus instance
events = EventBus()
