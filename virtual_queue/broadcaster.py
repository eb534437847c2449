"""Live queue updates for observers of a business.

On every lifecycle event the broadcaster pushes the business's refreshed
snapshot to:
- in-process observers subscribed to that business (callables), and
- every registered push transport (e.g. MQTT, one topic per business).

Delivery is best effort. An observer that raises is treated as disconnected
and pruned; a failing transport is logged and kept.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Protocol

from .events import LifecycleEvent

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)

Observer = Callable[[str, dict[str, Any]], None]


class PushTransport(Protocol):
    def broadcast(self, business_id: str, payload: dict[str, Any]) -> None: ...


class MqttPushTransport:
    """Publishes snapshots to `<ns>/businesses/<business_id>/queue`."""

    def __init__(self, *, mqtt: MqttClient, namespace: str) -> None:
        from .mqtt_topics import business_updates

        self._business_updates = business_updates
        self.mqtt = mqtt
        self.namespace = namespace

    def broadcast(self, business_id: str, payload: dict[str, Any]) -> None:
        self.mqtt.publish(self._business_updates(business_id, self.namespace), payload)


def build_payload(event: LifecycleEvent) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "type": "queue_updated",
        "event": event.type,
        "entry_id": event.entry.id,
        "ts": event.occurred_at.isoformat(),
    }
    payload.update(event.snapshot())
    return payload


class LiveUpdateBroadcaster:
    def __init__(self, transports: list[PushTransport] | None = None) -> None:
        self._lock = threading.Lock()
        self._observers: dict[str, list[Observer]] = {}
        self._transports: list[PushTransport] = list(transports or [])

    def add_transport(self, transport: PushTransport) -> None:
        with self._lock:
            self._transports.append(transport)

    def subscribe(self, business_id: str, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a function that unsubscribes it."""
        with self._lock:
            self._observers.setdefault(business_id, []).append(observer)

        def unsubscribe() -> None:
            self._prune(business_id, observer)

        return unsubscribe

    def observer_count(self, business_id: str) -> int:
        with self._lock:
            return len(self._observers.get(business_id, ()))

    def __call__(self, event: LifecycleEvent) -> None:
        payload = build_payload(event)
        business_id = event.business_id

        with self._lock:
            observers = list(self._observers.get(business_id, ()))
            transports = list(self._transports)

        for observer in observers:
            try:
                observer(business_id, payload)
            except Exception as e:
                logger.info("dropping observer of business %s: %s", business_id, e)
                self._prune(business_id, observer)

        for transport in transports:
            try:
                transport.broadcast(business_id, payload)
            except Exception:
                logger.exception("push transport %r failed for business %s", transport, business_id)

    def _prune(self, business_id: str, observer: Observer) -> None:
        with self._lock:
            observers = self._observers.get(business_id)
            if not observers:
                return
            try:
                observers.remove(observer)
            except ValueError:
                return
            if not observers:
                del self._observers[business_id]
