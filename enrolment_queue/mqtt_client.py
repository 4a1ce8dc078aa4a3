"""Small MQTT helper built on top of paho-mqtt.

paho-mqtt is callback-based. The desk tools also need a *blocking
request/response* call, so this wrapper offers both:

- `MqttClient` manages the connection and a background network loop.
- `request()` publishes a JSON message and waits for a correlated response
  (matched on `corr_id`, delivered on a dedicated `reply_to` topic).
- `publish(..., retain=True)` lets the broker keep the last board snapshot
  so displays that subscribe later get it immediately.
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
class PendingResponse:
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
    ) -> None:
        self.client_id = client_id
        self.host = host
        self.port = port
        self.keepalive = keepalive

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)
        self._client.on_message = self._on_message

        # External subscribers. Called with (topic, json_message).
        self._handlers: list[MessageHandler] = []

        # corr_id -> queue used by request()
        self._pending: dict[str, PendingResponse] = {}
        self._lock = threading.Lock()

        self._started = False

    def start(self) -> None:
        """Connect and start the background network loop."""
        if self._started:
            return
        self._client.connect(self.host, self.port, keepalive=self.keepalive)
        self._client.loop_start()
        self._started = True
        logger.debug("mqtt %s connected to %s:%s", self.client_id, self.host, self.port)

    def stop(self) -> None:
        """Stop and disconnect."""
        if not self._started:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self._started = False

    def add_handler(self, handler: MessageHandler) -> None:
        self._handlers.append(handler)

    def subscribe(self, topic: str) -> None:
        self._client.subscribe(topic, qos=0)

    def publish(self, topic: str, message: dict[str, Any], *, retain: bool = False) -> None:
        payload = json.dumps(message, separators=(",", ":")).encode("utf-8")
        self._client.publish(topic, payload=payload, qos=0, retain=retain)

    def request(
        self,
        *,
        request_topic: str,
        response_topic: str,
        message: dict[str, Any],
        timeout: float = 5.0,
    ) -> dict[str, Any]:
        """Publish a message and wait for a correlated response.

        The caller must ensure we are subscribed to `response_topic`.
        """
        corr_id = str(uuid.uuid4())
        msg = dict(message)
        msg["corr_id"] = corr_id
        msg["reply_to"] = response_topic

        q: "queue.Queue[dict[str, Any]]" = queue.Queue(maxsize=1)
        pending = PendingResponse(corr_id=corr_id, q=q)

        with self._lock:
            self._pending[corr_id] = pending

        self.publish(request_topic, msg)

        try:
            return q.get(timeout=timeout)
        except queue.Empty as e:
            raise TimeoutError(f"No response for corr_id={corr_id}") from e
        finally:
            with self._lock:
                self._pending.pop(corr_id, None)

    # -------------------- internal callbacks --------------------

    def dispatch(self, topic: str, data: dict[str, Any]) -> None:
        """Route one decoded message to a pending request or the handlers."""
        corr_id = data.get("corr_id")
        if isinstance(corr_id, str):
            with self._lock:
                pending = self._pending.get(corr_id)
            if pending is not None:
                try:
                    pending.q.put_nowait(data)
                except queue.Full:
                    pass
                return

        for h in list(self._handlers):
            try:
                h(topic, data)
            except Exception:
                # Keep the network loop alive; one bad handler must not stop the others.
                logger.exception("mqtt handler failed on %s", topic)

    def _on_message(self, client: mqtt.Client, userdata: Any, msg: mqtt.MQTTMessage) -> None:
        raw = msg.payload
        try:
            payload = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
            data = json.loads(payload)
        except (UnicodeDecodeError, ValueError):
            logger.debug("ignoring malformed message on %s", msg.topic)
            return
        if not isinstance(data, dict):
            return
        self.dispatch(msg.topic, data)
