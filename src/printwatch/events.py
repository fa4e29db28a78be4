"""Event bus -- publish/subscribe channel for fleet change notifications.

The change notifier publishes one event per added, changed or removed
printer, plus a full snapshot on demand.  Whatever delivers those events
to remote clients (websockets, a message queue, server-sent events)
subscribes here; the core never knows about the transport.

Example::

    bus = EventBus()

    def on_change(event: Event) -> None:
        print(f"{event.data['id']} is now {event.data['status']}")

    bus.subscribe(EventType.PRINTER_CHANGED, on_change)
    bus.publish(EventType.PRINTER_CHANGED, record.to_dict(), source="notifier")
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    """All event types emitted by printwatch."""

    PRINTER_ADDED = "printer.added"
    PRINTER_CHANGED = "printer.changed"
    PRINTER_REMOVED = "printer.removed"
    FLEET_SNAPSHOT = "fleet.snapshot"


@dataclass
class Event:
    """A single event on the bus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    source: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serialisable dictionary."""
        return {
            "type": self.type.value,
            "data": self.data,
            "timestamp": self.timestamp,
            "source": self.source,
        }


EventHandler = Callable[[Event], None]
EventFilter = Callable[[Event], bool]


class EventBus:
    """Thread-safe publish/subscribe event bus.

    Handlers are called synchronously in the publishing thread.  If a
    handler raises, the exception is logged but does not prevent other
    handlers from running.

    Subscribers may provide an optional *filter* predicate that is
    evaluated before the handler is called.
    """

    def __init__(self, max_history: int = 1000) -> None:
        self._handlers: dict[EventType, list[tuple[EventHandler, EventFilter | None]]] = {}
        self._wildcard_handlers: list[tuple[EventHandler, EventFilter | None]] = []
        self._lock = threading.Lock()
        self._history: list[Event] = []
        self._max_history = max_history

    def subscribe(
        self,
        event_type: EventType | None,
        handler: EventHandler,
        *,
        filter: EventFilter | None = None,
    ) -> None:
        """Register a handler for a specific event type.

        :param event_type: The event type to listen for, or ``None`` to
            receive ALL events (wildcard subscription).
        :param handler: Callable that accepts an :class:`Event`.
        :param filter: Optional predicate ``(Event) -> bool``.
        """
        with self._lock:
            if event_type is None:
                targets = self._wildcard_handlers
            else:
                targets = self._handlers.setdefault(event_type, [])
            if any(existing is handler for existing, _ in targets):
                logger.debug("Duplicate subscription for %s, skipping", event_type)
                return
            targets.append((handler, filter))

    def unsubscribe(self, event_type: EventType | None, handler: EventHandler) -> None:
        """Remove a previously registered handler.

        Silently does nothing if the handler is not found.
        """
        with self._lock:
            if event_type is None:
                self._wildcard_handlers = [(h, f) for h, f in self._wildcard_handlers if h is not handler]
            else:
                entries = self._handlers.get(event_type, [])
                self._handlers[event_type] = [(h, f) for h, f in entries if h is not handler]

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._wildcard_handlers) + sum(len(v) for v in self._handlers.values())

    def _dispatch_to_handlers(
        self,
        event: Event,
        handlers: list[tuple[EventHandler, EventFilter | None]],
    ) -> None:
        for handler, filt in handlers:
            try:
                if filt is not None and not filt(event):
                    continue
                handler(event)
            except Exception:
                logger.exception("Event handler %r failed for %s", handler, event.type.value)

    def publish(
        self,
        event_or_type: Event | EventType,
        data: dict[str, Any] | None = None,
        source: str = "",
    ) -> Event:
        """Dispatch an event to all matching handlers and return it.

        Can be called in two ways:
        - ``publish(event)`` -- pass a pre-built :class:`Event`.
        - ``publish(event_type, data_dict, source="...")`` -- build an
          :class:`Event` from the arguments.
        """
        if isinstance(event_or_type, EventType):
            event = Event(type=event_or_type, data=data or {}, source=source)
        else:
            event = event_or_type
        with self._lock:
            self._history.append(event)
            if len(self._history) > self._max_history:
                self._history = self._history[-self._max_history :]
            specific = list(self._handlers.get(event.type, []))
            wildcards = list(self._wildcard_handlers)

        # Call outside the lock so handlers may publish or subscribe.
        self._dispatch_to_handlers(event, specific + wildcards)
        return event

    def recent_events(self, event_type: EventType | None = None, limit: int = 50) -> list[Event]:
        """Return recent events, newest first."""
        with self._lock:
            events = list(self._history)
        if event_type is not None:
            events = [e for e in events if e.type == event_type]
        events.reverse()
        return events[:limit]

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
