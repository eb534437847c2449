from __future__ import annotations

# The lifecycle controller is the only writer of queue entry state.
#
# Every operation is one transaction against one entry:
#   1) load and check the entry's current status
#   2) write the transition to the registry
#   3) recompute positions/waits over the business's whole active list
#   4) publish a lifecycle event carrying the recomputed lists
#
# Steps 1-4 run under a per-business lock, so two read-modify-recompute cycles
# for the same business never interleave. Different businesses proceed in
# parallel. Step 4 only enqueues; notification and broadcast happen later on the
# event bus thread.

import itertools
import logging
import threading
import uuid
import zlib
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Sequence

from .directory import BusinessDirectory
from .errors import InvalidTransition, NotFound, ValidationError
from .events import (
    ENTRY_APPROVED,
    ENTRY_CREATED,
    ENTRY_REMOVED,
    ENTRY_SERVED,
    ENTRY_SERVICE_STARTED,
    EventBus,
    LifecycleEvent,
)
from .models import APPROVED, IN_SERVICE, PENDING, REMOVED, SERVED, Business, QueueEntry
from .registry import EntryRegistry, InMemoryEntryRegistry
from .wait_time import default_service_time, projected_wait, recompute, resolve_service_time

logger = logging.getLogger(__name__)

MIN_PHONE_DIGITS = 10
LOCK_STRIPES = 64


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _digits(value: str) -> int:
    return sum(ch.isdigit() for ch in value)


class QueueLifecycleController:
    """Queue transitions and queries for all businesses (testable without MQTT)."""

    def __init__(
        self,
        *,
        registry: EntryRegistry | None = None,
        directory: BusinessDirectory | None = None,
        bus: EventBus | None = None,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.registry = registry if registry is not None else InMemoryEntryRegistry()
        self.directory = directory
        self.bus = bus if bus is not None else EventBus()
        self._clock = clock
        self._new_id = id_factory or (lambda: uuid.uuid4().hex)

        # Fixed pool of locks; a business always maps to the same stripe.
        self._locks_guard = threading.Lock()
        self._locks = tuple(threading.Lock() for _ in range(LOCK_STRIPES))
        self._sequence = itertools.count(1)

    # -------------------- transitions --------------------

    def submit(
        self,
        business_id: str,
        customer_name: str,
        customer_phone: str,
        service_type: str | None = None,
        notes: str | None = None,
    ) -> QueueEntry:
        """Add a pending entry. Other entries' positions are untouched."""
        if not business_id:
            raise ValidationError("business_id required")
        name = (customer_name or "").strip()
        if not name:
            raise ValidationError("customer_name required")
        phone = (customer_phone or "").strip()
        if _digits(phone) < MIN_PHONE_DIGITS:
            raise ValidationError(f"customer_phone must contain at least {MIN_PHONE_DIGITS} digits")

        business = self._business(business_id, for_submit=True)

        with self._business_lock(business_id):
            entry = QueueEntry(
                id=self._new_id(),
                business_id=business_id,
                customer_name=name,
                customer_phone=phone,
                service_type=service_type or None,
                notes=notes or None,
                joined_at=self._clock(),
                sequence=self._next_sequence(),
            )
            self.registry.insert(entry)
            logger.info("entry %s joined business %s (pending)", entry.id, business_id)
            self._emit(ENTRY_CREATED, entry, business)
        return entry

    def approve(self, entry_id: str, estimated_service_time: int | None = None) -> QueueEntry:
        """Move a pending entry to the end of the active queue.

        Approval order, not submission order, decides queue order.
        """
        with self._transaction(entry_id) as entry:
            self._require(entry, "approve", PENDING)
            business = self._business(entry.business_id)
            minutes = resolve_service_time(estimated_service_time, business)

            active = self.registry.get_active_by_business(entry.business_id)
            approved = self._update(
                entry.id,
                status=APPROVED,
                approved_at=self._approval_stamp(active),
                estimated_service_time=minutes,
            )
            ordered = [e for e in active if e.id != entry.id] + [approved]
            self._recompute(entry.business_id, ordered, business)

            logger.info("entry %s approved (service %s min)", entry.id, minutes)
            return self._emit(ENTRY_APPROVED, self._reload(entry.id), business)

    def start_service(self, entry_id: str) -> QueueEntry:
        """Mark an approved entry as being served.

        The entry keeps its slot: it is still counted in the waits of the
        entries behind it until it is completed. Only one entry per business
        may be in service at a time.
        """
        with self._transaction(entry_id) as entry:
            self._require(entry, "start service for", APPROVED)
            active = self.registry.get_active_by_business(entry.business_id)
            busy = next((e for e in active if e.status == IN_SERVICE), None)
            if busy is not None:
                raise InvalidTransition(f"entry {busy.id} is already in service for this business")

            self.registry.update(entry.id, status=IN_SERVICE, service_started_at=self._clock())
            business = self._business(entry.business_id)
            self._recompute(entry.business_id, self.registry.get_active_by_business(entry.business_id), business)

            logger.info("entry %s in service", entry.id)
            return self._emit(ENTRY_SERVICE_STARTED, self._reload(entry.id), business)

    def complete(self, entry_id: str) -> QueueEntry:
        """Finish service; the entry is kept as a served record."""
        with self._transaction(entry_id) as entry:
            self._require(entry, "complete", IN_SERVICE)
            served = self._update(
                entry.id,
                status=SERVED,
                served_at=self._clock(),
                position=0,
                estimated_wait=None,
            )
            business = self._business(entry.business_id)
            self._recompute(entry.business_id, self.registry.get_active_by_business(entry.business_id), business)

            logger.info("entry %s served", entry.id)
            return self._emit(ENTRY_SERVED, served, business)

    def remove(self, entry_id: str) -> bool:
        """Delete a non-terminal entry (hard delete)."""
        with self._transaction(entry_id) as entry:
            if entry.is_terminal:
                raise InvalidTransition(f"cannot remove entry in status {entry.status}")
            self._remove_locked(entry)
        return True

    def sweep_expired_pending(self, max_age: timedelta) -> list[str]:
        """Remove pending entries that joined more than `max_age` ago.

        Entries approved or removed in the meantime are skipped. Returns the
        removed ids.
        """
        cutoff = self._clock() - max_age
        removed: list[str] = []
        for business_id in self.registry.business_ids():
            for stale in self.registry.get_pending_by_business(business_id):
                if stale.joined_at >= cutoff:
                    continue
                with self._business_lock(business_id):
                    entry = self.registry.get(stale.id)
                    if entry is None or entry.status != PENDING:
                        continue
                    self._remove_locked(entry)
                removed.append(entry.id)
        if removed:
            logger.info("expired %d stale pending entries", len(removed))
        return removed

    # -------------------- queries --------------------

    def get(self, entry_id: str) -> QueueEntry:
        return self._load(entry_id)

    def get_active(self, business_id: str) -> list[QueueEntry]:
        return self.registry.get_active_by_business(business_id)

    def get_pending(self, business_id: str) -> list[QueueEntry]:
        return self.registry.get_pending_by_business(business_id)

    def snapshot(self, business_id: str) -> dict[str, Any]:
        """Active and pending lists of a business, read consistently."""
        with self._business_lock(business_id):
            active = self.registry.get_active_by_business(business_id)
            pending = self.registry.get_pending_by_business(business_id)
        return {
            "business_id": business_id,
            "active": [e.to_message() for e in active],
            "pending": [e.to_message() for e in pending],
        }

    def stats(self, business_id: str) -> dict[str, Any]:
        """Dashboard numbers for one business."""
        business = self._business(business_id)
        default = default_service_time(business)
        midnight = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)

        active = self.registry.get_active_by_business(business_id)
        pending = self.registry.get_pending_by_business(business_id)
        served = self.registry.get_by_business(business_id, (SERVED,))
        in_service = next((e.id for e in active if e.status == IN_SERVICE), None)

        return {
            "business_id": business_id,
            "queue_length": len(active),
            "pending_count": len(pending),
            "in_service_id": in_service,
            "served_today": sum(1 for e in served if e.served_at is not None and e.served_at >= midnight),
            "total_wait": projected_wait(active, default),
            "average_service_time": default,
            "status": "ACTIVE" if business is None or business.is_active else "INACTIVE",
        }

    # -------------------- internals --------------------

    def _remove_locked(self, entry: QueueEntry) -> None:
        self.registry.remove(entry.id)
        business = self._business(entry.business_id)
        if entry.is_active:
            self._recompute(entry.business_id, self.registry.get_active_by_business(entry.business_id), business)

        logger.info("entry %s removed (was %s)", entry.id, entry.status)
        gone = replace(entry, status=REMOVED, position=0, estimated_wait=None)
        self._emit(ENTRY_REMOVED, gone, business)

    def _next_sequence(self) -> int:
        with self._locks_guard:
            return next(self._sequence)

    def _business_lock(self, business_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(business_id.encode("utf-8")) % LOCK_STRIPES]

    def _approval_stamp(self, active: Sequence[QueueEntry]) -> datetime:
        # Strictly after the current tail, so appending and sorting by
        # approved_at always agree, even on a tied or backward clock.
        now = self._clock()
        stamps = [e.approved_at for e in active if e.approved_at is not None]
        if stamps and now <= max(stamps):
            return max(stamps) + timedelta(microseconds=1)
        return now

    def _update(self, entry_id: str, **changes: Any) -> QueueEntry:
        entry = self.registry.update(entry_id, **changes)
        if entry is None:
            raise NotFound(f"queue entry {entry_id} not found")
        return entry

    @contextmanager
    def _transaction(self, entry_id: str) -> Iterator[QueueEntry]:
        # business_id is immutable, so the lock picked from the first read is the
        # right one; the entry is re-read under the lock for a fresh status.
        first = self._load(entry_id)
        with self._business_lock(first.business_id):
            yield self._load(entry_id)

    def _load(self, entry_id: str) -> QueueEntry:
        entry = self.registry.get(entry_id)
        if entry is None:
            raise NotFound(f"queue entry {entry_id} not found")
        return entry

    def _reload(self, entry_id: str) -> QueueEntry:
        return self._load(entry_id)

    @staticmethod
    def _require(entry: QueueEntry, action: str, status: str) -> None:
        if entry.status != status:
            raise InvalidTransition(f"cannot {action} entry in status {entry.status}")

    def _business(self, business_id: str, *, for_submit: bool = False) -> Business | None:
        if self.directory is None:
            return None
        business = self.directory.get_business(business_id)
        if for_submit:
            if business is None:
                raise NotFound(f"business {business_id} not found")
            if not business.is_active:
                raise ValidationError(f"business {business_id} is not accepting customers")
        return business

    def _recompute(self, business_id: str, ordered: Sequence[QueueEntry], business: Business | None) -> None:
        for placement in recompute(ordered, default_service_time(business)):
            current = self.registry.get(placement.entry_id)
            if current is None:
                continue
            if current.position == placement.position and current.estimated_wait == placement.estimated_wait:
                continue
            self.registry.update(
                placement.entry_id,
                position=placement.position,
                estimated_wait=placement.estimated_wait,
            )

    def _emit(self, event_type: str, entry: QueueEntry, business: Business | None) -> QueueEntry:
        event = LifecycleEvent(
            type=event_type,
            entry=entry,
            business_id=entry.business_id,
            active=tuple(self.registry.get_active_by_business(entry.business_id)),
            pending=tuple(self.registry.get_pending_by_business(entry.business_id)),
            business=business,
            occurred_at=self._clock(),
        )
        self.bus.publish(event)
        return entry
