"""MQTT transport for assistant telemetry and text commands."""

from __future__ import annotations

import asyncio
import logging
import ssl
import threading
from collections.abc import Callable

import paho.mqtt.client as mqtt

from .config import MqttConfig


class AssistantMqtt:
    """Thread-safe paho wrapper.

    Retained ``online``/``offline`` availability uses a last will, and subscriptions are
    replayed whenever paho reconnects.
    """

    def __init__(self, config: MqttConfig, client_id: str, logger: logging.Logger | None = None) -> None:
        self.config = config
        self.client_id = client_id
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()
        self._handlers: dict[str, Callable] = {}

    @property
    def availability_topic(self) -> str:
        return f"{self.config.topic_base}/availability"

    @property
    def enabled(self) -> bool:
        return bool(self.config.host)

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; telemetry and text commands disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                clean_session=True,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            if self.config.tls_enabled:
                tls_kwargs: dict[str, object] = {"tls_version": ssl.PROTOCOL_TLS_CLIENT}
                if self.config.ca_cert:
                    tls_kwargs["ca_certs"] = self.config.ca_cert
                if self.config.cert:
                    tls_kwargs["certfile"] = self.config.cert
                if self.config.key:
                    tls_kwargs["keyfile"] = self.config.key
                client.tls_set(**tls_kwargs)
            client.will_set(self.availability_topic, payload="offline", retain=True)
            client.on_connect = self._on_connect
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except (OSError, ValueError) as exc:
                self._logger.warning("[mqtt] Failed to connect to %s:%s: %s", self.config.host, self.config.port, exc)
                return
            client.loop_start()
            self._client = client
            self._logger.info("[mqtt] Connected to %s:%s as %s", self.config.host, self.config.port, self.client_id)

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.publish(self.availability_topic, payload="offline", retain=True)
            client.loop_stop()
            client.disconnect()

    def _on_connect(self, client, _userdata, _flags, reason_code, _properties=None):  # type: ignore[no-untyped-def]
        if getattr(reason_code, "is_failure", False):
            self._logger.warning("[mqtt] Broker refused connection: %s", reason_code)
            return
        client.publish(self.availability_topic, payload="online", retain=True)
        for topic in list(self._handlers):
            client.subscribe(topic)

    def is_connected(self) -> bool:
        client = self._client
        return bool(client and client.is_connected())

    def publish(self, topic: str, payload: str, retain: bool = False, qos: int = 0) -> None:
        client = self._client
        if not client:
            return
        info = client.publish(topic, payload=payload, qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            self._logger.debug("[mqtt] Publish to %s failed (rc=%s)", topic, info.rc)

    def subscribe(
        self,
        topic: str,
        on_message: Callable[[str], None],
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Deliver decoded payloads for ``topic``.

        With ``loop`` set the callback runs on that event loop instead of the paho
        network thread.
        """
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")

        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            payload = message.payload.decode("utf-8", errors="ignore")
            if loop is not None:
                loop.call_soon_threadsafe(on_message, payload)
                return
            try:
                on_message(payload)
            except Exception as exc:
                self._logger.error("[mqtt] Subscriber callback failed for topic '%s': %s", topic, exc, exc_info=True)

        self._handlers[topic] = _callback
        client.message_callback_add(topic, _callback)
        result, _mid = client.subscribe(topic)
        if result == mqtt.MQTT_ERR_NO_CONN:
            # Replayed by _on_connect once the broker acknowledges
            self._logger.debug("[mqtt] Subscription to %s deferred until connected", topic)
        elif result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", topic, result)
