import pytest

from virtual_queue.config import Settings
from virtual_queue.directory import InMemoryBusinessDirectory
from virtual_queue.notifications import ConsoleGateway, TwilioGateway
from virtual_queue.service import MqttQueueService, build_engine, make_gateway


class FakeMqtt:
    def __init__(self):
        self.published = []
        self.subscriptions = []
        self.handlers = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def publish(self, topic, message):
        self.published.append((topic, message))


@pytest.fixture
def mqtt():
    return FakeMqtt()


@pytest.fixture
def service(mqtt, gateway):
    directory = InMemoryBusinessDirectory()
    directory.add("Wellness Clinic", average_service_time=30, business_id="clinic")
    engine = build_engine(Settings(namespace="demo/v1"), directory=directory, gateway=gateway, mqtt=mqtt)
    return MqttQueueService(mqtt=mqtt, engine=engine, namespace="demo/v1")


def _submit(service, name="Ann"):
    resp = service.handle_request(
        {"type": "submit", "business_id": "clinic", "customer_name": name, "customer_phone": "555 123 4567"}
    )
    assert resp["type"] == "entry"
    return resp["entry"]


def test_submit_approve_and_query(service):
    entry = _submit(service)
    assert entry["status"] == "pending"
    assert entry["position"] is None

    resp = service.handle_request({"type": "approve", "entry_id": entry["id"]})
    assert resp["entry"]["position"] == 1
    assert resp["entry"]["estimated_service_time"] == 30

    second = _submit(service, "Bob")
    service.handle_request({"type": "approve", "entry_id": second["id"], "estimated_service_time": 10})

    active = service.handle_request({"type": "get_active", "business_id": "clinic"})
    assert [(e["customer_name"], e["estimated_wait"]) for e in active["entries"]] == [("Ann", 0), ("Bob", 30)]

    stats = service.handle_request({"type": "stats", "business_id": "clinic"})
    assert stats["queue_length"] == 2
    assert stats["average_service_time"] == 30


def test_full_lifecycle_over_requests(service):
    entry = _submit(service)
    for mtype, status in (("approve", "approved"), ("start_service", "in_service"), ("complete", "served")):
        resp = service.handle_request({"type": mtype, "entry_id": entry["id"]})
        assert resp["entry"]["status"] == status

    got = service.handle_request({"type": "get_entry", "entry_id": entry["id"]})
    assert got["entry"]["served_at"] is not None

    snap = service.handle_request({"type": "snapshot", "business_id": "clinic"})
    assert snap["type"] == "snapshot"
    assert snap["active"] == []


def test_remove(service):
    entry = _submit(service)
    assert service.handle_request({"type": "remove", "entry_id": entry["id"]}) == {
        "type": "removed",
        "entry_id": entry["id"],
    }
    pending = service.handle_request({"type": "get_pending", "business_id": "clinic"})
    assert pending["entries"] == []


@pytest.mark.parametrize(
    "request_msg, code, status",
    [
        ({"type": "approve", "entry_id": "missing"}, "not_found", 404),
        ({"type": "get_entry", "entry_id": "missing"}, "not_found", 404),
        ({"type": "submit", "business_id": "clinic", "customer_name": "", "customer_phone": "5551234567"}, "validation_error", 400),
        ({"type": "submit", "business_id": "gym", "customer_name": "A", "customer_phone": "5551234567"}, "not_found", 404),
        ({"type": "approve"}, "bad_request", 400),
        ({"type": "stats"}, "bad_request", 400),
        ({"type": "teleport"}, "bad_request", 400),
    ],
)
def test_errors_map_to_status(service, request_msg, code, status):
    resp = service.handle_request(request_msg)
    assert resp["type"] == "error"
    assert resp["code"] == code
    assert resp["status"] == status


def test_invalid_transition_is_400(service):
    entry = _submit(service)
    resp = service.handle_request({"type": "complete", "entry_id": entry["id"]})
    assert (resp["code"], resp["status"]) == ("invalid_transition", 400)


def test_replies_go_to_reply_topic_with_corr_id(service, mqtt):
    service._handle_message(
        "demo/v1/queue/requests",
        {"type": "get_pending", "business_id": "clinic", "reply_to": "demo/v1/queue/responses/c1", "corr_id": "42"},
    )
    [(topic, reply)] = mqtt.published
    assert topic == "demo/v1/queue/responses/c1"
    assert reply["corr_id"] == "42"
    assert reply["type"] == "entries"


def test_requests_without_reply_to_are_ignored(service, mqtt):
    service._handle_message("demo/v1/queue/requests", {"type": "get_pending", "business_id": "clinic"})
    assert mqtt.published == []


def test_start_subscribes_and_stop_flushes_events(service, mqtt, gateway):
    service.start()
    try:
        assert mqtt.subscriptions == ["demo/v1/queue/requests"]
        assert mqtt.handlers == [service._handle_message]
        _submit(service)
    finally:
        service.stop()

    assert len(gateway.sent) == 1
    assert any(topic == "demo/v1/businesses/clinic/queue" for topic, _ in mqtt.published)


def test_make_gateway():
    assert isinstance(make_gateway(Settings()), ConsoleGateway)
    with pytest.raises(ValueError):
        make_gateway(Settings(sms_backend="twilio"))


def test_twilio_gateway_requires_credentials():
    with pytest.raises(ValueError):
        TwilioGateway(account_sid="", auth_token="t", from_number="+15550000000")


@pytest.mark.parametrize("minutes", [float("inf"), "abc", -1, True, 2.5])
def test_bad_service_minutes_get_a_validation_reply(service, mqtt, minutes):
    entry = _submit(service)
    service._handle_message(
        "demo/v1/queue/requests",
        {
            "type": "approve",
            "entry_id": entry["id"],
            "estimated_service_time": minutes,
            "reply_to": "demo/v1/queue/responses/c1",
            "corr_id": "7",
        },
    )
    [(topic, reply)] = mqtt.published
    assert reply["corr_id"] == "7"
    assert (reply["code"], reply["status"]) == ("validation_error", 400)
    assert service.controller.get(entry["id"]).status == "pending"
