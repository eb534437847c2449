from __future__ import annotations

# Position and wait-time helpers.
#
# The model is deliberately simple:
#   position(k)       = k (1-based, in the order the active list is given)
#   estimated_wait(k) = sum of service minutes of the entries at 1..k-1
#
# Everything is recomputed from scratch over the whole active list of a
# business after every mutation. Queues are tens of entries long, so the O(n)
# pass is cheap and there is no running total that could drift.

import math
from typing import NamedTuple, Sequence

from .errors import ValidationError
from .models import DEFAULT_AVERAGE_SERVICE_MINUTES, Business, QueueEntry

# Used when the business record is missing altogether.
DEFAULT_SERVICE_MINUTES = DEFAULT_AVERAGE_SERVICE_MINUTES

# An approved entry whose estimated wait drops to this many minutes or fewer
# gets a "you're next" message.
NEAR_FRONT_MINUTES = 15


class Placement(NamedTuple):
    entry_id: str
    position: int
    estimated_wait: int


def default_service_time(business: Business | None) -> int:
    """Service minutes to assume for entries without an explicit estimate."""
    if business is None or business.average_service_time is None:
        return DEFAULT_SERVICE_MINUTES
    return int(business.average_service_time)


def resolve_service_time(requested: int | None, business: Business | None) -> int:
    """Pick the service time recorded on approval.

    Args:
        requested: minutes given by the business on approval, if any (>= 0).
        business: the owning business, or None if it could not be found.

    Returns:
        `requested` when given, else the business average, else the hardcoded
        default.
    """
    if requested is None:
        return default_service_time(business)
    if isinstance(requested, bool):
        raise ValidationError("estimated_service_time must be a whole number of minutes")
    if isinstance(requested, float) and not (math.isfinite(requested) and requested.is_integer()):
        raise ValidationError("estimated_service_time must be a whole number of minutes")
    try:
        minutes = int(requested)
    except (TypeError, ValueError, OverflowError) as e:
        raise ValidationError("estimated_service_time must be a whole number of minutes") from e
    if minutes < 0:
        raise ValidationError("estimated_service_time must be >= 0")
    return minutes


def _service_minutes(entry: QueueEntry, default: int) -> int:
    if entry.estimated_service_time is None:
        return default
    return entry.estimated_service_time


def recompute(active_entries: Sequence[QueueEntry], default: int) -> list[Placement]:
    """Assign positions and estimated waits to an already-ordered active list."""
    placements: list[Placement] = []
    elapsed = 0
    for index, entry in enumerate(active_entries):
        placements.append(Placement(entry.id, index + 1, elapsed))
        elapsed += _service_minutes(entry, default)
    return placements


def projected_wait(active_entries: Sequence[QueueEntry], default: int) -> int:
    """Wait an entry would get if it were appended to the active list now."""
    return sum(_service_minutes(e, default) for e in active_entries)
