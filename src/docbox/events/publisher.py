"""In-process event publisher for the notification boundary.

The publisher keeps a bounded buffer of recent events and fans each event
out to registered hooks. Delivery (email, push, websockets) is the job of
whatever the caller hooks in.
"""

from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from docbox.config import get_settings
from docbox.events.types import DomainEvent, EventType

logger = structlog.get_logger(__name__)

EventHook = Callable[[DomainEvent], None]


@dataclass
class Subscription:
    """A hook plus the event types it wants. No types means everything."""

    hook: EventHook
    event_types: set[EventType] = field(default_factory=set)

    def wants(self, event: DomainEvent) -> bool:
        return not self.event_types or event.event_type in self.event_types


class EventPublisher:
    """Fan-out of domain events to subscribed hooks.

    Usage:
        publisher = EventPublisher()
        publisher.subscribe(notifier.handle, [EventType.BOX_NEED_DOCS])
        publisher.publish(some_event)
    """

    def __init__(self, buffer_size: int | None = None):
        size = buffer_size or get_settings().event_buffer_size
        self._event_buffer: deque[DomainEvent] = deque(maxlen=size)
        self._subscriptions: list[Subscription] = []
        self._logger = logger.bind(component="event_publisher")

    @property
    def recent_events(self) -> list[DomainEvent]:
        """Get recently published events."""
        return list(self._event_buffer)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, hook: EventHook, event_types: Iterable[EventType] | None = None) -> None:
        """Register a hook, optionally filtered to some event types.

        Args:
            hook: Function that receives each matching event.
            event_types: Event types to deliver. None delivers all.
        """
        self._subscriptions.append(Subscription(hook=hook, event_types=set(event_types or ())))

    def unsubscribe(self, hook: EventHook) -> None:
        """Remove every subscription for a hook."""
        self._subscriptions = [s for s in self._subscriptions if s.hook != hook]

    def publish(self, event: DomainEvent) -> None:
        """Buffer an event and hand it to matching hooks.

        A failing hook is logged and does not stop the others.
        """
        self._event_buffer.append(event)
        self._logger.debug("event_published", event_type=event.event_type.value, box_id=event.box_id)

        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            try:
                subscription.hook(event)
            except Exception as e:
                self._logger.error(
                    "event_hook_error",
                    event_type=event.event_type.value,
                    error=str(e),
                )

    def publish_all(self, events: Iterable[DomainEvent]) -> None:
        for event in events:
            self.publish(event)

    def clear(self) -> None:
        self._event_buffer.clear()

    def get_status(self) -> dict[str, Any]:
        """Get publisher status information."""
        return {
            "subscriber_count": len(self._subscriptions),
            "buffer_size": len(self._event_buffer),
            "buffer_limit": self._event_buffer.maxlen,
        }


class NullPublisher(EventPublisher):
    """Publisher that drops everything. Used when no notifier is wired."""

    def publish(self, event: DomainEvent) -> None:
        return None


# Global publisher instance for convenience
_publisher: EventPublisher | None = None


def get_publisher() -> EventPublisher:
    """Get or create the global event publisher instance."""
    global _publisher
    if _publisher is None:
        _publisher = EventPublisher()
    return _publisher


def reset_publisher() -> None:
    """Drop the global publisher (tests and process reconfiguration)."""
    global _publisher
    _publisher = None
