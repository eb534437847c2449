"""Business directory as seen by the queue engine.

Directory maintenance lives elsewhere; the engine only ever calls
`get_business()`. `InMemoryBusinessDirectory` is enough for a single-process
deployment and for tests.
"""

from __future__ import annotations

import threading
import uuid
from typing import Iterable, Protocol

from .models import DEFAULT_AVERAGE_SERVICE_MINUTES, Business


class BusinessDirectory(Protocol):
    def get_business(self, business_id: str) -> Business | None: ...


SAMPLE_BUSINESSES = (
    ("Elite Hair Salon", 25),
    ("Wellness Clinic", 30),
    ("Quick Fix Auto", 45),
)


class InMemoryBusinessDirectory:
    def __init__(self, businesses: Iterable[Business] = ()) -> None:
        self._lock = threading.Lock()
        self._businesses: dict[str, Business] = {b.id: b for b in businesses}

    @classmethod
    def with_samples(cls) -> "InMemoryBusinessDirectory":
        directory = cls()
        for name, minutes in SAMPLE_BUSINESSES:
            directory.add(name, average_service_time=minutes)
        return directory

    def add(
        self,
        name: str,
        *,
        average_service_time: int = DEFAULT_AVERAGE_SERVICE_MINUTES,
        is_active: bool = True,
        business_id: str | None = None,
    ) -> Business:
        business = Business(
            id=business_id or uuid.uuid4().hex,
            name=name,
            average_service_time=average_service_time,
            is_active=is_active,
        )
        with self._lock:
            self._businesses[business.id] = business
        return business

    def get_business(self, business_id: str) -> Business | None:
        with self._lock:
            return self._businesses.get(business_id)

    def all(self) -> list[Business]:
        with self._lock:
            return list(self._businesses.values())
