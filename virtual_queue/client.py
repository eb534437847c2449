from __future__ import annotations

# Queue client.
#
# `QueueClient` speaks the service's request/response protocol, so scripts
# and front ends can drive the queue without knowing MQTT details. The small
# CLI at the bottom covers the customer side (join, check status) and the
# business side (approve, start, complete, remove) plus a live `watch`.

import argparse
import json
import time
from typing import Any

from .config import add_mqtt_args
from .mqtt_client import MqttClient
from .mqtt_topics import business_updates, queue_requests, queue_responses


class QueueClient:
    def __init__(self, *, mqtt_host: str, mqtt_port: int, namespace: str, timeout: float = 5.0) -> None:
        # Unique client id so several clients can run concurrently.
        self.client_id = f"queue-client-{int(time.time() * 1000)}"
        self.namespace = namespace
        self.timeout = timeout
        self.mqtt = MqttClient(client_id=self.client_id, host=mqtt_host, port=mqtt_port)
        self._reply_topic = queue_responses(self.client_id, namespace)

    def __enter__(self) -> "QueueClient":
        self.mqtt.start()
        self.mqtt.subscribe(self._reply_topic)
        return self

    def __exit__(self, *exc: Any) -> None:
        self.mqtt.stop()

    def call(self, mtype: str, **fields: Any) -> dict[str, Any]:
        message = {"type": mtype, **{k: v for k, v in fields.items() if v is not None}}
        return self.mqtt.request(
            request_topic=queue_requests(self.namespace),
            response_topic=self._reply_topic,
            message=message,
            timeout=self.timeout,
        )

    def join(self, business_id: str, name: str, phone: str, service_type: str | None = None, notes: str | None = None) -> dict[str, Any]:
        return self.call(
            "submit",
            business_id=business_id,
            customer_name=name,
            customer_phone=phone,
            service_type=service_type,
            notes=notes,
        )

    def status(self, entry_id: str) -> dict[str, Any]:
        return self.call("get_entry", entry_id=entry_id)


def _describe(resp: dict[str, Any]) -> str:
    if resp.get("type") == "error":
        return f"error {resp.get('status')} {resp.get('code')}: {resp.get('message')}"
    entry = resp.get("entry")
    if not entry:
        return json.dumps(resp, indent=2)
    if entry.get("position"):
        return (
            f"{entry['customer_name']} [{entry['id']}] {entry['status']}: "
            f"#{entry['position']}, estimated wait {entry['estimated_wait']} min"
        )
    return f"{entry['customer_name']} [{entry['id']}] {entry['status']}"


def watch(*, mqtt_host: str, mqtt_port: int, namespace: str, business_id: str) -> None:
    """Print every live snapshot pushed for one business until Ctrl+C."""
    mqtt = MqttClient(client_id=f"watch-{int(time.time() * 1000)}", host=mqtt_host, port=mqtt_port)

    def show(topic: str, msg: dict[str, Any]) -> None:
        active = msg.get("active", [])
        print(f"[watch] {msg.get('event')}: {len(active)} active, {len(msg.get('pending', []))} pending")
        for e in active:
            print(f"    #{e['position']} {e['customer_name']} ({e['status']}, wait {e['estimated_wait']} min)")

    mqtt.add_handler(show)
    mqtt.start()
    mqtt.subscribe(business_updates(business_id, namespace))
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        mqtt.stop()


def main() -> None:
    parser = argparse.ArgumentParser(description="Virtual queue client (MQTT)")
    add_mqtt_args(parser)
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_join = sub.add_parser("join", help="join a business's queue")
    p_join.add_argument("--business-id", required=True)
    p_join.add_argument("--name", required=True)
    p_join.add_argument("--phone", required=True)
    p_join.add_argument("--service-type", default=None)
    p_join.add_argument("--notes", default=None)

    p_status = sub.add_parser("status", help="show one queue entry")
    p_status.add_argument("entry_id")

    p_approve = sub.add_parser("approve", help="approve a pending entry")
    p_approve.add_argument("entry_id")
    p_approve.add_argument("--service-minutes", type=int, default=None)

    for name, help_text in (
        ("start", "start serving an approved entry"),
        ("complete", "finish serving an entry"),
        ("remove", "remove an entry from the queue"),
    ):
        sub.add_parser(name, help=help_text).add_argument("entry_id")

    for name, help_text in (("snapshot", "print a business's queue"), ("stats", "print dashboard numbers")):
        sub.add_parser(name, help=help_text).add_argument("business_id")

    p_watch = sub.add_parser("watch", help="follow live updates of a business")
    p_watch.add_argument("business_id")

    args = parser.parse_args()

    if args.cmd == "watch":
        watch(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace, business_id=args.business_id)
        return

    with QueueClient(mqtt_host=args.mqtt_host, mqtt_port=args.mqtt_port, namespace=args.namespace) as client:
        if args.cmd == "join":
            resp = client.join(args.business_id, args.name, args.phone, args.service_type, args.notes)
        elif args.cmd == "status":
            resp = client.status(args.entry_id)
        elif args.cmd == "approve":
            resp = client.call("approve", entry_id=args.entry_id, estimated_service_time=args.service_minutes)
        elif args.cmd == "start":
            resp = client.call("start_service", entry_id=args.entry_id)
        elif args.cmd in ("complete", "remove"):
            resp = client.call(args.cmd, entry_id=args.entry_id)
        else:
            resp = client.call(args.cmd, business_id=args.business_id)

    print(f"[client] {_describe(resp)}")


if __name__ == "__main__":
    main()
