"""Lifecycle events and the bus that carries them.

The controller publishes one `LifecycleEvent` per successful transition. The
event already carries the recomputed active and pending lists of the business,
so subscribers never have to read the registry back (and never see an
ordering older than the mutation they are reacting to).

Delivery is decoupled from publishing: `publish()` only enqueues, and a
background worker thread hands events to subscribers in publish order. A slow
SMS gateway or push fan-out therefore never delays the next queue mutation.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable

from .models import Business, QueueEntry

logger = logging.getLogger(__name__)

ENTRY_CREATED = "entry_created"
ENTRY_APPROVED = "entry_approved"
ENTRY_SERVICE_STARTED = "entry_service_started"
ENTRY_SERVED = "entry_served"
ENTRY_REMOVED = "entry_removed"


@dataclass(frozen=True)
class LifecycleEvent:
    type: str
    entry: QueueEntry
    business_id: str
    active: tuple[QueueEntry, ...] = ()
    pending: tuple[QueueEntry, ...] = ()
    business: Business | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def snapshot(self) -> dict[str, Any]:
        """Queue state of the business right after this event."""
        return {
            "business_id": self.business_id,
            "active": [e.to_message() for e in self.active],
            "pending": [e.to_message() for e in self.pending],
        }


Subscriber = Callable[[LifecycleEvent], None]


class EventBus:
    """In-process publish/subscribe channel with a single delivery thread."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()
        self._queue: "queue.Queue[LifecycleEvent]" = queue.Queue()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def publish(self, event: LifecycleEvent) -> None:
        """Queue an event for delivery. Dropped when nobody is subscribed."""
        with self._lock:
            if not self._subscribers:
                return
        self._queue.put_nowait(event)

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker_loop, name="event-bus", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        """Stop the delivery thread. Events still queued stay queued."""
        self._stop_event.set()
        t = self._thread
        if t and t.is_alive():
            t.join(timeout=timeout)
        self._thread = None

    def drain(self) -> int:
        """Deliver everything queued so far in the calling thread.

        Returns the number of events delivered. Handy for tests and for
        flushing on shutdown.
        """
        delivered = 0
        while True:
            try:
                event = self._queue.get_nowait()
            except queue.Empty:
                return delivered
            self._deliver(event)
            delivered += 1

    def _worker_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                event = self._queue.get(timeout=0.2)
            except queue.Empty:
                continue
            self._deliver(event)

    def _deliver(self, event: LifecycleEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                # One broken subscriber must not starve the others.
                logger.exception("subscriber %r failed on %s for entry %s", subscriber, event.type, event.entry.id)
