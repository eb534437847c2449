from virtual_queue.mqtt_topics import (
    all_business_updates,
    business_updates,
    queue_requests,
    queue_responses,
)


def test_topic_helpers():
    ns = "demo/v1"
    assert queue_requests(ns) == "demo/v1/queue/requests"
    assert queue_responses("c1", ns) == "demo/v1/queue/responses/c1"
    assert business_updates("b1", ns) == "demo/v1/businesses/b1/queue"
    assert all_business_updates(ns) == "demo/v1/businesses/+/queue"


def test_default_namespace():
    assert queue_requests() == "vqueue/v1/queue/requests"
