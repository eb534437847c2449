from datetime import datetime, timedelta, timezone

import pytest

from virtual_queue.errors import DuplicateId
from virtual_queue.models import APPROVED, IN_SERVICE, PENDING, SERVED, QueueEntry
from virtual_queue.registry import InMemoryEntryRegistry

T0 = datetime(2024, 5, 1, tzinfo=timezone.utc)


def _entry(entry_id, business_id="b", seq=1, status=PENDING, position=0, joined_at=T0):
    return QueueEntry(
        id=entry_id,
        business_id=business_id,
        customer_name=entry_id,
        customer_phone="5551234567",
        joined_at=joined_at,
        sequence=seq,
        status=status,
        position=position,
    )


def test_insert_and_get():
    r = InMemoryEntryRegistry()
    e = r.insert(_entry("a"))
    assert r.get("a") == e
    assert r.get("missing") is None
    assert len(r) == 1


def test_insert_duplicate_id_fails():
    r = InMemoryEntryRegistry()
    r.insert(_entry("a"))
    with pytest.raises(DuplicateId):
        r.insert(_entry("a"))


def test_update_returns_new_entry_and_keeps_old_one_unchanged():
    r = InMemoryEntryRegistry()
    original = r.insert(_entry("a"))
    updated = r.update("a", status=APPROVED, position=1)
    assert updated.status == APPROVED
    assert original.status == PENDING
    assert r.get("a").position == 1
    assert r.update("missing", status=APPROVED) is None


def test_remove_cleans_business_index():
    r = InMemoryEntryRegistry()
    r.insert(_entry("a", business_id="b1"))
    r.insert(_entry("b", business_id="b2", seq=2))
    assert r.remove("a") is True
    assert r.remove("a") is False
    assert r.business_ids() == ["b2"]
    assert r.get_by_business("b1") == []


def test_active_sorted_by_position_and_pending_by_join_time():
    r = InMemoryEntryRegistry()
    r.insert(_entry("late", seq=1, joined_at=T0 + timedelta(minutes=5)))
    r.insert(_entry("early", seq=2, joined_at=T0))
    r.insert(_entry("second", seq=3, status=APPROVED, position=2))
    r.insert(_entry("first", seq=4, status=IN_SERVICE, position=1))
    r.insert(_entry("done", seq=5, status=SERVED))
    r.insert(_entry("other", business_id="x", seq=6, status=APPROVED, position=1))

    assert [e.id for e in r.get_active_by_business("b")] == ["first", "second"]
    assert [e.id for e in r.get_pending_by_business("b")] == ["early", "late"]
    assert [e.id for e in r.get_by_business("b", (SERVED,))] == ["done"]
