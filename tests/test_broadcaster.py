from virtual_queue.broadcaster import LiveUpdateBroadcaster, MqttPushTransport


class FakeMqtt:
    def __init__(self):
        self.published = []

    def publish(self, topic, message):
        self.published.append((topic, message))


def _wired(controller, bus, broadcaster=None):
    broadcaster = broadcaster or LiveUpdateBroadcaster()
    bus.subscribe(broadcaster)
    return broadcaster


def test_observers_get_snapshot_of_their_business_only(controller, bus):
    b = _wired(controller, bus)
    seen_b1, seen_b2 = [], []
    b.subscribe("b1", lambda business_id, payload: seen_b1.append(payload))
    b.subscribe("b2", lambda business_id, payload: seen_b2.append(payload))

    a = controller.submit("b1", "A", "5551234567")
    controller.approve(a.id, 15)
    bus.drain()

    assert seen_b2 == []
    assert [p["event"] for p in seen_b1] == ["entry_created", "entry_approved"]
    last = seen_b1[-1]
    assert last["type"] == "queue_updated"
    assert last["business_id"] == "b1"
    assert last["entry_id"] == a.id
    assert [(e["id"], e["position"], e["estimated_wait"]) for e in last["active"]] == [(a.id, 1, 0)]
    assert last["pending"] == []


def test_disconnected_observer_is_pruned(controller, bus):
    b = _wired(controller, bus)

    def gone(business_id, payload):
        raise ConnectionResetError("socket closed")

    healthy = []
    b.subscribe("b1", gone)
    b.subscribe("b1", lambda business_id, payload: healthy.append(payload))

    controller.submit("b1", "A", "5551234567")
    controller.submit("b1", "B", "5551234567")
    bus.drain()

    assert b.observer_count("b1") == 1
    assert len(healthy) == 2


def test_unsubscribe(controller, bus):
    b = _wired(controller, bus)
    seen = []
    unsubscribe = b.subscribe("b1", lambda business_id, payload: seen.append(payload))
    unsubscribe()
    unsubscribe()

    controller.submit("b1", "A", "5551234567")
    bus.drain()
    assert seen == []
    assert b.observer_count("b1") == 0


def test_mqtt_transport_publishes_per_business_topic(controller, bus):
    mqtt = FakeMqtt()
    _wired(controller, bus, LiveUpdateBroadcaster([MqttPushTransport(mqtt=mqtt, namespace="demo/v1")]))

    controller.submit("b1", "A", "5551234567")
    bus.drain()

    [(topic, payload)] = mqtt.published
    assert topic == "demo/v1/businesses/b1/queue"
    assert payload["event"] == "entry_created"
    assert len(payload["pending"]) == 1


def test_failing_transport_is_kept(controller, bus):
    class Flaky:
        calls = 0

        def broadcast(self, business_id, payload):
            Flaky.calls += 1
            raise OSError("push channel down")

    mqtt = FakeMqtt()
    b = LiveUpdateBroadcaster([Flaky()])
    b.add_transport(MqttPushTransport(mqtt=mqtt, namespace="demo/v1"))
    _wired(controller, bus, b)

    controller.submit("b1", "A", "5551234567")
    controller.submit("b1", "B", "5551234567")
    bus.drain()

    assert Flaky.calls == 2
    assert len(mqtt.published) == 2
