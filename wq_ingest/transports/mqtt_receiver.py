"""Receptor MQTT: decodifica y entrega eventos al coordinador.

El callback de paho solo decodifica y hace submit() (no bloquea). Si la
cola del worker está llena el evento se descarta y se cuenta.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from ..domain.events import InboundEvent, UnknownEvent
from .decoder import SUBSCRIPTIONS, decode_message

logger = logging.getLogger(__name__)


class MQTTDeviceReceiver:
    def __init__(
        self,
        submit: Callable[[InboundEvent], bool],
        broker_host: str = "localhost",
        broker_port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        client_id: str = "wq-ingest",
        qos: int = 1,
    ):
        self._submit = submit
        self.broker_host = broker_host
        self.broker_port = broker_port
        self.username = username
        self.password = password
        self.client_id = f"{client_id}-{int(time.time())}"
        self._qos = qos

        self._client: Optional[mqtt.Client] = None
        self._connected = threading.Event()
        self._lock = threading.Lock()
        self._stats = {"received": 0, "accepted": 0, "rejected_full": 0, "unknown": 0}

    def start(self, wait_seconds: float = 5.0) -> bool:
        try:
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            if self.username and self.password:
                self._client.username_pw_set(self.username, self.password)

            logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
            self._client.connect(self.broker_host, self.broker_port, keepalive=60)
            self._client.loop_start()
        except (OSError, ValueError) as e:
            logger.error("[MQTT] Connection failed: %s", e)
            return False

        if not self._connected.wait(wait_seconds):
            # loop_start sigue reintentando en segundo plano.
            logger.error("[MQTT] Connection timeout after %.1fs", wait_seconds)
            return False
        return True

    def stop(self) -> None:
        if self._client is not None:
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None
        self._connected.clear()
        logger.info("[MQTT] Stopped. %s", self.stats)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._connected.clear()
            logger.error("[MQTT] Connection failed: %s", reason_code)
            return
        self._connected.set()
        logger.info("[MQTT] Connected to broker")
        for topic in SUBSCRIPTIONS:
            client.subscribe(topic, qos=self._qos)
            logger.info("[MQTT] Subscribed to %s", topic)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected.clear()
        logger.warning("[MQTT] Disconnected (%s)", reason_code)

    def _on_message(self, client, userdata, msg):
        self.handle(msg.topic, msg.payload)

    def handle(self, topic: str, payload: bytes) -> None:
        """Decodifica y entrega. Público para tests y para el puente HTTP."""
        events = decode_message(topic, payload)
        with self._lock:
            self._stats["received"] += 1
        for event in events:
            if isinstance(event, UnknownEvent):
                with self._lock:
                    self._stats["unknown"] += 1
                logger.warning("[MQTT] unknown message topic=%s reason=%s", topic, event.reason)
            accepted = self._submit(event)
            with self._lock:
                self._stats["accepted" if accepted else "rejected_full"] += 1

    @property
    def is_connected(self) -> bool:
        return self._connected.is_set()

    @property
    def stats(self) -> dict:
        with self._lock:
            return dict(self._stats, connected=self.is_connected)
