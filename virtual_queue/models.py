from __future__ import annotations

# Queue data model.
#
# Entries are immutable dataclasses: every change goes through
# `dataclasses.replace` inside the registry, so a caller holding an entry never
# sees it change underneath them.

from dataclasses import dataclass
from datetime import datetime
from typing import Any

PENDING = "pending"
APPROVED = "approved"
IN_SERVICE = "in_service"
SERVED = "served"
REMOVED = "removed"

# Lifecycle order; a status never moves to one earlier in this tuple.
LIFECYCLE = (PENDING, APPROVED, IN_SERVICE, SERVED)

ACTIVE_STATUSES = frozenset({APPROVED, IN_SERVICE})
TERMINAL_STATUSES = frozenset({SERVED, REMOVED})

DEFAULT_AVERAGE_SERVICE_MINUTES = 25


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


@dataclass(frozen=True)
class Business:
    """Read-only view of a business, as far as the queue engine cares."""

    id: str
    name: str
    average_service_time: int = DEFAULT_AVERAGE_SERVICE_MINUTES
    is_active: bool = True

    def to_message(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "average_service_time": self.average_service_time,
            "is_active": self.is_active,
        }


@dataclass(frozen=True)
class QueueEntry:
    id: str
    business_id: str
    customer_name: str
    customer_phone: str
    joined_at: datetime
    sequence: int
    service_type: str | None = None
    notes: str | None = None
    status: str = PENDING
    position: int = 0
    estimated_service_time: int | None = None
    estimated_wait: int | None = None
    approved_at: datetime | None = None
    service_started_at: datetime | None = None
    served_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_message(self) -> dict[str, Any]:
        """JSON-ready representation used on the wire."""
        return {
            "id": self.id,
            "business_id": self.business_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "service_type": self.service_type,
            "notes": self.notes,
            "status": self.status,
            "position": self.position if self.is_active else None,
            "estimated_service_time": self.estimated_service_time,
            "estimated_wait": self.estimated_wait if self.is_active else None,
            "joined_at": _iso(self.joined_at),
            "approved_at": _iso(self.approved_at),
            "service_started_at": _iso(self.service_started_at),
            "served_at": _iso(self.served_at),
        }
