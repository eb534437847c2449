from __future__ import annotations

# Queue service: the MQTT request surface around the lifecycle controller.
#
# This file contains two layers:
# 1) `build_engine()` wires controller + event bus + dispatcher + broadcaster
#    (no broker needed, used by tests too)
# 2) `MqttQueueService` + `main()` translate MQTT requests into controller
#    calls and controller errors into error envelopes.

import argparse
import logging
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from .broadcaster import LiveUpdateBroadcaster, MqttPushTransport
from .config import Settings, add_mqtt_args, add_service_args
from .controller import QueueLifecycleController
from .directory import BusinessDirectory, InMemoryBusinessDirectory
from .errors import ErrorResponse, QueueError
from .events import EventBus
from .notifications import ConsoleGateway, MessagingGateway, NotificationDispatcher, TwilioGateway

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    controller: QueueLifecycleController
    bus: EventBus
    dispatcher: NotificationDispatcher
    broadcaster: LiveUpdateBroadcaster


def make_gateway(settings: Settings) -> MessagingGateway:
    if settings.sms_backend == "twilio":
        return TwilioGateway(
            account_sid=settings.twilio_account_sid or "",
            auth_token=settings.twilio_auth_token or "",
            from_number=settings.twilio_phone_number or "",
        )
    return ConsoleGateway()


def build_engine(
    settings: Settings,
    *,
    directory: BusinessDirectory | None = None,
    gateway: MessagingGateway | None = None,
    mqtt: MqttClient | None = None,
) -> Engine:
    bus = EventBus()
    controller = QueueLifecycleController(directory=directory, bus=bus)
    dispatcher = NotificationDispatcher(
        gateway if gateway is not None else make_gateway(settings),
        base_url=settings.base_url,
        near_front_minutes=settings.near_front_minutes,
    )
    broadcaster = LiveUpdateBroadcaster()
    if mqtt is not None:
        broadcaster.add_transport(MqttPushTransport(mqtt=mqtt, namespace=settings.namespace))

    bus.subscribe(dispatcher)
    bus.subscribe(broadcaster)
    return Engine(controller=controller, bus=bus, dispatcher=dispatcher, broadcaster=broadcaster)


def _bad_request(message: str) -> dict[str, Any]:
    return ErrorResponse("bad_request", message).to_message()


def _str(msg: dict[str, Any], key: str) -> str:
    value = msg.get(key)
    return str(value) if value is not None else ""


class MqttQueueService:
    """MQTT adapter around the lifecycle controller."""

    def __init__(self, *, mqtt: MqttClient, engine: Engine, namespace: str) -> None:
        from .mqtt_topics import queue_requests

        self._queue_requests = queue_requests

        self.mqtt = mqtt
        self.engine = engine
        self.controller = engine.controller
        self.namespace = namespace

        self._stop_event = threading.Event()
        self._sweep_thread: threading.Thread | None = None

    def start(self, *, pending_ttl: timedelta | None = None, sweep_every: float = 60.0) -> None:
        self.mqtt.subscribe(self._queue_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)
        self.engine.bus.start()

        if pending_ttl is not None:
            self._sweep_thread = threading.Thread(
                target=self._sweep_loop,
                args=(pending_ttl, sweep_every),
                name="pending-sweep",
                daemon=True,
            )
            self._sweep_thread.start()

    def stop(self) -> None:
        """Stop background threads and flush queued events. Call before disconnecting MQTT."""
        self._stop_event.set()
        t = self._sweep_thread
        if t and t.is_alive():
            t.join(timeout=1.0)
        self.engine.bus.stop()
        self.engine.bus.drain()

    def _sweep_loop(self, ttl: timedelta, interval: float) -> None:
        while not self._stop_event.wait(interval):
            try:
                self.controller.sweep_expired_pending(ttl)
            except Exception:
                logger.exception("pending sweep failed")

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return
        self._reply(reply_to, corr_id, self.handle_request(msg))

    def handle_request(self, msg: dict[str, Any]) -> dict[str, Any]:
        """Run one request and build its reply (errors included)."""
        mtype = msg.get("type")
        try:
            return self._dispatch(mtype, msg)
        except QueueError as e:
            logger.info("%s rejected: %s", mtype, e.message)
            return e.to_response().to_message()

    def _dispatch(self, mtype: Any, msg: dict[str, Any]) -> dict[str, Any]:
        c = self.controller

        # -------- transitions --------
        if mtype == "submit":
            entry = c.submit(
                _str(msg, "business_id"),
                _str(msg, "customer_name"),
                _str(msg, "customer_phone"),
                service_type=msg.get("service_type"),
                notes=msg.get("notes"),
            )
            return {"type": "entry", "entry": entry.to_message()}

        if mtype in ("approve", "start_service", "complete", "remove", "get_entry"):
            entry_id = _str(msg, "entry_id")
            if not entry_id:
                return _bad_request("entry_id required")

            if mtype == "approve":
                entry = c.approve(entry_id, msg.get("estimated_service_time"))
            elif mtype == "start_service":
                entry = c.start_service(entry_id)
            elif mtype == "complete":
                entry = c.complete(entry_id)
            elif mtype == "remove":
                c.remove(entry_id)
                return {"type": "removed", "entry_id": entry_id}
            else:
                entry = c.get(entry_id)
            return {"type": "entry", "entry": entry.to_message()}

        # -------- queries --------
        if mtype in ("get_active", "get_pending", "snapshot", "stats"):
            business_id = _str(msg, "business_id")
            if not business_id:
                return _bad_request("business_id required")

            if mtype == "get_active":
                return {"type": "entries", "entries": [e.to_message() for e in c.get_active(business_id)]}
            if mtype == "get_pending":
                return {"type": "entries", "entries": [e.to_message() for e in c.get_pending(business_id)]}
            if mtype == "snapshot":
                return {"type": "snapshot", **c.snapshot(business_id)}
            return {"type": "stats", **c.stats(business_id)}

        return _bad_request(f"unknown request type {mtype!r}")


def main() -> None:
    from .mqtt_client import MqttClient

    parser = argparse.ArgumentParser(description="Virtual queue service (MQTT)")
    add_mqtt_args(parser)
    add_service_args(parser)
    args = parser.parse_args()
    settings = Settings.from_args(args)

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    mqtt_client = MqttClient(client_id=f"queue-service-{int(time.time())}", host=settings.mqtt_host, port=settings.mqtt_port)
    mqtt_client.start()

    directory = InMemoryBusinessDirectory.with_samples()
    engine = build_engine(settings, directory=directory, mqtt=mqtt_client)
    service = MqttQueueService(mqtt=mqtt_client, engine=engine, namespace=settings.namespace)
    service.start(pending_ttl=settings.pending_ttl, sweep_every=settings.sweep_every)

    print(f"[service] connected to MQTT {settings.mqtt_host}:{settings.mqtt_port}, namespace={settings.namespace}")
    for business in directory.all():
        print(f"[service] {business.id}  {business.name} ({business.average_service_time} min)")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


if __name__ == "__main__":
    main()
