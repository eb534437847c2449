"""Entry registry: the passive store behind the lifecycle controller.

`EntryRegistry` is the storage interface the controller talks to;
`InMemoryEntryRegistry` is the process-local implementation. A persistent
backend only has to implement the same six operations.

The registry never recomputes positions and never emits events.
"""

from __future__ import annotations

import abc
import threading
from dataclasses import replace
from typing import Any, Iterable

from .errors import DuplicateId
from .models import ACTIVE_STATUSES, PENDING, QueueEntry


class EntryRegistry(abc.ABC):
    @abc.abstractmethod
    def get(self, entry_id: str) -> QueueEntry | None: ...

    @abc.abstractmethod
    def get_by_business(
        self, business_id: str, statuses: Iterable[str] | None = None
    ) -> list[QueueEntry]:
        """All entries of a business (optionally filtered), in creation order."""

    @abc.abstractmethod
    def business_ids(self) -> list[str]:
        """Businesses that currently have at least one entry."""

    @abc.abstractmethod
    def insert(self, entry: QueueEntry) -> QueueEntry: ...

    @abc.abstractmethod
    def update(self, entry_id: str, **changes: Any) -> QueueEntry | None: ...

    @abc.abstractmethod
    def remove(self, entry_id: str) -> bool: ...

    def get_active_by_business(self, business_id: str) -> list[QueueEntry]:
        """Approved and in-service entries, sorted by position."""
        entries = self.get_by_business(business_id, ACTIVE_STATUSES)
        return sorted(entries, key=lambda e: (e.position, e.sequence))

    def get_pending_by_business(self, business_id: str) -> list[QueueEntry]:
        """Pending entries, oldest first."""
        entries = self.get_by_business(business_id, (PENDING,))
        return sorted(entries, key=lambda e: (e.joined_at, e.sequence))


class InMemoryEntryRegistry(EntryRegistry):
    """Dict-backed registry with a secondary index by business id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, QueueEntry] = {}
        self._by_business: dict[str, set[str]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, entry_id: str) -> QueueEntry | None:
        with self._lock:
            return self._entries.get(entry_id)

    def get_by_business(
        self, business_id: str, statuses: Iterable[str] | None = None
    ) -> list[QueueEntry]:
        wanted = frozenset(statuses) if statuses is not None else None
        with self._lock:
            ids = self._by_business.get(business_id, ())
            entries = [self._entries[i] for i in ids]
        if wanted is not None:
            entries = [e for e in entries if e.status in wanted]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def business_ids(self) -> list[str]:
        with self._lock:
            return list(self._by_business)

    def insert(self, entry: QueueEntry) -> QueueEntry:
        with self._lock:
            if entry.id in self._entries:
                raise DuplicateId(f"entry {entry.id} already exists")
            self._entries[entry.id] = entry
            self._by_business.setdefault(entry.business_id, set()).add(entry.id)
        return entry

    def update(self, entry_id: str, **changes: Any) -> QueueEntry | None:
        with self._lock:
            current = self._entries.get(entry_id)
            if current is None:
                return None
            updated = replace(current, **changes)
            self._entries[entry_id] = updated
            return updated

    def remove(self, entry_id: str) -> bool:
        with self._lock:
            entry = self._entries.pop(entry_id, None)
            if entry is None:
                return False
            ids = self._by_business.get(entry.business_id)
            if ids is not None:
                ids.discard(entry_id)
                if not ids:
                    del self._by_business[entry.business_id]
            return True
