"""Internal MQTT runtime carrying cross-process broadcast messages."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from gridstate.exceptions import GridStateError


@dataclass(frozen=True)
class MqttEvent:
    """Decoded inbound MQTT message."""

    topic: str
    payload: dict[str, Any]


def decode_mqtt_payload(payload: bytes) -> dict[str, Any]:
    """Parse MQTT payload bytes into a JSON object."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise GridStateError("MQTT payload is not a JSON object")
    return parsed


class MqttRuntime:
    """Threaded paho-mqtt runtime that emits parsed events onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        host: str,
        port: int,
        topic_filter: str,
        on_event: Callable[[MqttEvent], None],
        keepalive: int = 60,
        client_id: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._host = host
        self._port = port
        self._topic_filter = topic_filter
        self._on_event = on_event
        self._keepalive = keepalive
        self._client_id = client_id or f"gridstate_{secrets.token_hex(6)}"
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def start(self) -> None:
        """Connect and subscribe to the configured topic filter."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s topic=%s client_id=%s",
            self._host,
            self._port,
            self._topic_filter,
            self._client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected, subscribing topic=%s", self._topic_filter)
            c.subscribe(self._topic_filter, qos=0)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                event = MqttEvent(topic=msg.topic, payload=decode_mqtt_payload(msg.payload))
            except (GridStateError, UnicodeDecodeError, json.JSONDecodeError):
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._loop.call_soon_threadsafe(self._on_event, event)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(self._host, self._port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def publish(self, topic: str, payload: dict[str, Any]) -> bool:
        """Publish a JSON payload; ``False`` when not connected."""
        client = self._client
        if client is None or not self._running:
            return False
        info = client.publish(topic, json.dumps(payload, separators=(",", ":")), qos=0)
        return info.rc == mqtt.MQTT_ERR_SUCCESS

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
