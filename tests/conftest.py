from datetime import datetime, timedelta, timezone

import pytest

from virtual_queue.controller import QueueLifecycleController
from virtual_queue.directory import InMemoryBusinessDirectory
from virtual_queue.events import EventBus


class StepClock:
    """Deterministic clock: every reading is one second after the previous one."""

    def __init__(self, start=None, step=timedelta(seconds=1)):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now

    def advance(self, delta):
        self.now += delta


class RecordingGateway:
    def __init__(self):
        self.sent = []

    def send(self, phone_number, message):
        self.sent.append((phone_number, message))
        return True


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def events(bus):
    received = []
    bus.subscribe(received.append)
    return received


@pytest.fixture
def directory():
    d = InMemoryBusinessDirectory()
    d.add("Elite Hair Salon", average_service_time=25, business_id="salon")
    d.add("Closed Shop", average_service_time=10, is_active=False, business_id="closed")
    return d


@pytest.fixture
def controller(bus, clock):
    return QueueLifecycleController(bus=bus, clock=clock)


@pytest.fixture
def gateway():
    return RecordingGateway()
