"""Small MQTT helper built on top of paho-mqtt.

- `MqttClient` manages the connection and a background network loop.
- `publish()` / handlers speak JSON dicts, not bytes.
- `request()` publishes a message and blocks until the correlated reply
  arrives (matched on `corr_id`, delivered on the caller's `reply_to` topic).

Subscriptions are remembered and replayed on every (re)connect, so a broker
restart does not silently leave the service deaf.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable

import paho.mqtt.client as mqtt

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, dict[str, Any]], None]


@dataclass(frozen=True)
class PendingReply:
    corr_id: str
    q: "queue.Queue[dict[str, Any]]"


class MqttClient:
    """Thin wrapper around paho-mqtt with JSON convenience APIs."""

    def __init__(
        self,
        *,
        client_id: str,
        host: str,
        port: int,
        keepalive: int = 30,
        qos: int = 1,
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive
        self.qos = qos

        self._client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True
        )
        self._client.on_message = self._on_message
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

        # Called with (topic, json_message) for everything that is not a reply.
        self._handlers: list[MessageHandler] = []
        self._topics: set[str] = set()

        # corr_id -> queue used by request()
        self._pending: dict[str, PendingReply] = {}
        self._lock = threading.Lock()

        self._started = False

    def start(self) -> None:
        """Connect and start the background network loop."""
        if self._started:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._started = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def subscribe(self, topic: str) -> None:
        with self._lock:
            self._topics.add(topic)
        self._client.subscribe(topic, qos=self.qos)

    def publish(self, topic: str, message: dict[str, Any]) -> None:
        payload = json.dumps(message, separators=(",", ":"), default=str).encode("utf-8")
        self._client.publish(topic, payload=payload, qos=self.qos)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish a message and wait for the correlated reply.

        The caller must already be subscribed to `response_topic`.
        """
        corr_id = str(uuid.uuid4())
        msg = dict(message)
        msg["corr_id"] = corr_id
        msg["reply_to"] = response_topic

        q: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        with self._lock:
            self._pending[corr_id] = PendingReply(corr_id=corr_id, q=q)

        self.publish(request_topic, msg)

        try:
            return q.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"No response for corr_id={corr_id}") from e
        finally:
            with self._lock:
                self._pending.pop(corr_id, None)

    # -------------------- internal callbacks --------------------

    def _on_connect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.error("%s: connect to %s:%s refused: %s", self.client_id, self.host, self.port, reason_code)
            return
        with self._lock:
            topics = sorted(self._topics)
        for topic in topics:
            client.subscribe(topic, qos=self.qos)
        logger.debug("%s: connected, %d subscriptions restored", self.client_id, len(topics))

    def _on_disconnect(self, client: mqtt.Client, userdata: Any, flags: Any, reason_code: Any, properties: Any) -> None:
        if self._started:
            logger.warning("%s: disconnected from broker (%s)", self.client_id, reason_code)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        raw = msg.payload
        try:
            text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            data = json.loads(text)
        except (UnicodeDecodeError, ValueError):
            logger.warning("%s: dropping malformed message on %s", self.client_id, msg.topic)
            return
        if not isinstance(data, dict):
            return

        # Replies to our own request() calls never reach the handlers.
        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                pending = self._pending.get(corr_id)
            if pending is not None:
                try:
                    pending.q.put_nowait(data)
                except queue.Full:
                    logger.debug("%s: duplicate reply for %s ignored", self.client_id, corr_id)
                return

        for h in list(self._handlers):
            try:
                h(msg.topic, data)
            except Exception:
                # Keep the network loop alive whatever a handler does.
                logger.exception("%s: handler failed on %s", self.client_id, msg.topic)
