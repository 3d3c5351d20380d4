"""
In-process lifecycle event bus.

Events only say "registration X changed". Subscribers must re-read the record
store rather than trust anything in the payload: the publish and the write it
describes are not transactional. Dispatch is synchronous and fire-and-forget;
nothing survives a restart or crosses process boundaries.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List

from ..util.logging import logger

REGISTRATION_UPDATED = "registration-updated"
ADMIN_ACTION_COMPLETED = "admin-action-completed"
REGISTRATION_REMOVED = "registration-removed"
WILDCARD = "*"


@dataclass
class LifecycleEvent:
    event_type: str
    registration_id: str
    event_kind: str
    extra: Dict[str, Any] = field(default_factory=dict)
    published_at: datetime = field(default_factory=datetime.now)

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extra)
        payload["registrationId"] = self.registration_id
        payload["eventKind"] = self.event_kind
        return payload


@dataclass(frozen=True)
class Subscription:
    event_type: str
    handler: Callable[[LifecycleEvent], None]
    token: int


class EventBus:
    """Publish/subscribe keyed by event type, with ``*`` receiving everything."""

    def __init__(self):
        self._subscribers: Dict[str, List[Subscription]] = {}
        self._lock = threading.Lock()
        self._next_token = 0

    def subscribe(self, event_type: str, handler: Callable[[LifecycleEvent], None]) -> Subscription:
        if not callable(handler):
            raise ValueError(f"Event handler must be callable: {handler}")
        if not event_type:
            raise ValueError("event_type is required")

        with self._lock:
            self._next_token += 1
            subscription = Subscription(event_type, handler, self._next_token)
            self._subscribers.setdefault(event_type, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        with self._lock:
            handlers = self._subscribers.get(subscription.event_type, [])
            if subscription not in handlers:
                return False
            handlers.remove(subscription)
            if not handlers:
                del self._subscribers[subscription.event_type]
        return True

    def subscriber_count(self, event_type: str = None) -> int:
        with self._lock:
            if event_type is None:
                return sum(len(handlers) for handlers in self._subscribers.values())
            return len(self._subscribers.get(event_type, []))

    def publish(self, event_type: str, payload: Dict[str, Any]) -> int:
        """Deliver to every current subscriber of ``event_type`` and ``*``.

        Returns the number of handlers that ran without raising. A failing
        handler is logged and does not stop delivery to the others.
        """
        registration_id = payload.get("registrationId")
        if not registration_id:
            raise ValueError("event payload requires registrationId")

        extra = {k: v for k, v in payload.items() if k not in ("registrationId", "eventKind")}
        event = LifecycleEvent(
            event_type=event_type,
            registration_id=registration_id,
            event_kind=payload.get("eventKind", event_type),
            extra=extra,
        )

        # Snapshot so handlers may (un)subscribe while we dispatch
        with self._lock:
            targets = list(self._subscribers.get(event_type, []))
            if event_type != WILDCARD:
                targets += self._subscribers.get(WILDCARD, [])

        delivered = 0
        failed = 0
        for subscription in targets:
            try:
                subscription.handler(event)
                delivered += 1
            except Exception as e:
                failed += 1
                logger.warning(f"Event handler for '{event_type}' failed on {registration_id}: {e}")

        logger.log_event_dispatch(event_type, registration_id, delivered, failed)
        return delivered

    def clear(self):
        with self._lock:
            self._subscribers.clear()


# Global event bus instance
event_bus = EventBus()


def publish(event_type: str, payload: Dict[str, Any]) -> int:
    """Publish a lifecycle event on the global bus."""
    return event_bus.publish(event_type, payload)


def subscribe(event_type: str, handler: Callable[[LifecycleEvent], None]) -> Subscription:
    """Subscribe to an event type (or ``*``) on the global bus."""
    return event_bus.subscribe(event_type, handler)


def unsubscribe(subscription: Subscription) -> bool:
    return event_bus.unsubscribe(subscription)
