"""
When consumers re-read registration state.

A ``RegistrationView`` holds the last fetched copy of one registration and
re-reads it on mount, on any lifecycle event for that registration, and when
it becomes visible again after missing events while hidden. Interval polling
exists only behind REFRESH_POLLING_ENABLED.

``StaleReadCache`` serves the last good copy when the record store is
temporarily unreachable, marked as stale.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional

from . import heartbeat
from .config import is_refresh_polling_enabled, get_refresh_poll_interval, STALE_CACHE_MAX_ENTRIES
from .errors import NotFoundError, TransientStoreError
from .events import (
    EventBus, LifecycleEvent, Subscription, event_bus,
    REGISTRATION_UPDATED, ADMIN_ACTION_COMPLETED, REGISTRATION_REMOVED,
)
from .schema import Registration
from ..util.logging import logger

WATCHED_EVENTS = (REGISTRATION_UPDATED, ADMIN_ACTION_COMPLETED, REGISTRATION_REMOVED)

# May return None or raise NotFoundError for a missing registration
Fetch = Callable[[str], Optional[Registration]]


class RegistrationView:
    """Keeps a consumer's copy of one registration fresh."""

    def __init__(self, registration_id: str, fetch: Fetch, bus: EventBus = None):
        self.registration_id = registration_id
        self._fetch = fetch
        self._bus = bus or event_bus
        self._subscriptions: List[Subscription] = []
        self._visible = True
        self._missed_while_hidden = False
        self._poll_task: Optional[str] = None
        self.record: Optional[Registration] = None
        self.removed = False
        self.fetch_count = 0
        self.last_fetched_at: Optional[datetime] = None

    @property
    def mounted(self) -> bool:
        return bool(self._subscriptions)

    def mount(self) -> Optional[Registration]:
        if not self.mounted:
            for event_type in WATCHED_EVENTS:
                self._subscriptions.append(self._bus.subscribe(event_type, self._on_event))
        return self.refetch()

    def unmount(self):
        for subscription in self._subscriptions:
            self._bus.unsubscribe(subscription)
        self._subscriptions = []
        self.stop_polling()

    def refetch(self) -> Optional[Registration]:
        """Re-read the record. A missing registration leaves the view marked removed."""
        try:
            self.record = self._fetch(self.registration_id)
        except NotFoundError:
            self.record = None
        self.removed = self.record is None
        self.fetch_count += 1
        self.last_fetched_at = datetime.now()
        self._missed_while_hidden = False
        return self.record

    def _on_event(self, event: LifecycleEvent):
        if event.registration_id != self.registration_id:
            return
        if not self._visible:
            self._missed_while_hidden = True
            return
        self.refetch()

    def set_visibility(self, visible: bool):
        """Becoming visible re-reads unconditionally; hidden views only note missed events."""
        was_visible = self._visible
        self._visible = visible
        if visible and not was_visible:
            self.refetch()

    # Opt-in polling

    def start_polling(self, interval_sec: int = None) -> str:
        if not is_refresh_polling_enabled():
            raise RuntimeError("Polling is disabled (REFRESH_POLLING_ENABLED=false)")

        interval = interval_sec or get_refresh_poll_interval()
        name = f"refresh.{self.registration_id}.{id(self)}"
        heartbeat.register_task(name, interval, self._poll)
        self._poll_task = name
        return name

    def _poll(self):
        if self._visible:
            self.refetch()

    def stop_polling(self):
        if self._poll_task is not None:
            heartbeat.unregister_task(self._poll_task)
            self._poll_task = None


@dataclass
class CachedRead:
    registration: Registration
    stale: bool
    fetched_at: datetime


class StaleReadCache:
    """Read-through cache that only answers from memory when the store is down."""

    def __init__(self, fetch: Callable[[str], Registration], max_entries: int = STALE_CACHE_MAX_ENTRIES):
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._fetch = fetch
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, CachedRead]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self):
        return len(self._entries)

    def get(self, registration_id: str) -> CachedRead:
        try:
            registration = self._fetch(registration_id)
        except TransientStoreError:
            with self._lock:
                cached = self._entries.get(registration_id)
                if cached is None:
                    raise
                self._entries.move_to_end(registration_id)
            logger.log_operation("refresh.stale_read", "degraded", {
                "registration_id": registration_id,
                "fetched_at": cached.fetched_at.isoformat(),
            })
            return CachedRead(cached.registration, True, cached.fetched_at)

        fresh = CachedRead(registration, False, datetime.now())
        with self._lock:
            self._entries[registration_id] = fresh
            self._entries.move_to_end(registration_id)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return fresh

    def invalidate(self, registration_id: str):
        with self._lock:
            self._entries.pop(registration_id, None)

    def clear(self):
        with self._lock:
            self._entries.clear()
