"""Cross-client change notification for the local fallback path.

A local write reaches other clients two ways: the storage medium raises a
`StorageEvent` in every other area, and the writer posts a
`BroadcastMessage` on the channel ``app_state:<key>``. Either path may be
missing in a given environment, so listeners wire both and dedupe upstream
with `SnapshotGate`.
"""

from __future__ import annotations

import contextlib
import copy
import hashlib
import json
import logging
import secrets
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import ValidationError

from gridstate._dispatch import dispatch
from gridstate._mqtt import MqttEvent, MqttRuntime
from gridstate.models.state import BroadcastMessage
from gridstate.state.local import LocalFallbackStore, StorageEvent

_logger = logging.getLogger(__name__)

MessageListener = Callable[[dict[str, Any]], None]
PayloadHandler = Callable[[Any], None]


class BroadcastChannel(Protocol):
    name: str

    def post(self, message: dict[str, Any]) -> None:
        ...

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        ...

    def close(self) -> None:
        ...


class BroadcastHub(Protocol):
    def open(self, name: str) -> BroadcastChannel:
        ...


class _HubChannel:
    """Named channel endpoint opened from an `InProcessBroadcastHub`."""

    def __init__(self, hub: InProcessBroadcastHub, name: str) -> None:
        self.name = name
        self._hub = hub
        self._listeners: list[MessageListener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def post(self, message: dict[str, Any]) -> None:
        if self._closed:
            self._hub.logger.debug("Post on closed channel %s ignored", self.name)
            return
        self._hub._deliver(self, message)  # noqa: SLF001

    def add_listener(self, listener: MessageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._listeners.clear()
        self._hub._detach(self)  # noqa: SLF001

    def _receive(self, message: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            dispatch(listener, copy.deepcopy(message), logger=self._hub.logger)


class InProcessBroadcastHub:
    """Channels shared by every client in this process.

    A message posted on one channel instance reaches every other open
    instance with the same name, never the sender itself.
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self.logger = logger or _logger
        self._channels: dict[str, list[_HubChannel]] = {}

    def open(self, name: str) -> _HubChannel:
        channel = _HubChannel(self, name)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def open_count(self, name: str) -> int:
        return len(self._channels.get(name, ()))

    def _detach(self, channel: _HubChannel) -> None:
        members = self._channels.get(channel.name)
        if not members:
            return
        with contextlib.suppress(ValueError):
            members.remove(channel)
        if not members:
            del self._channels[channel.name]

    def _deliver(self, origin: _HubChannel, message: dict[str, Any]) -> None:
        for channel in list(self._channels.get(origin.name, ())):
            if channel is not origin:
                channel._receive(message)  # noqa: SLF001

    def deliver_external(self, name: str, message: dict[str, Any]) -> None:
        """Hand a message that arrived from outside this process to local channels."""
        for channel in list(self._channels.get(name, ())):
            channel._receive(message)  # noqa: SLF001


class MqttBroadcastHub(InProcessBroadcastHub):
    """In-process hub bridged to other processes through an MQTT broker.

    Each post is also published on ``<topic_prefix>/<channel>`` wrapped in an
    envelope carrying this hub's id; envelopes that come back from the broker
    with our own id are dropped.
    """

    def __init__(
        self,
        *,
        topic_prefix: str = "gridstate",
        runtime_factory: Callable[[Callable[[MqttEvent], None], str], MqttRuntime],
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(logger=logger)
        self.hub_id = secrets.token_hex(8)
        self._topic_prefix = topic_prefix.rstrip("/")
        self._runtime = runtime_factory(self._on_mqtt_event, f"{self._topic_prefix}/#")

    @property
    def runtime(self) -> MqttRuntime:
        return self._runtime

    def topic_for(self, name: str) -> str:
        return f"{self._topic_prefix}/{name}"

    def start(self) -> None:
        """Connect the MQTT runtime (blocking; run it in an executor)."""
        self._runtime.start()

    def stop(self) -> None:
        self._runtime.stop()

    def _deliver(self, origin: _HubChannel, message: dict[str, Any]) -> None:
        super()._deliver(origin, message)
        envelope = {"origin": self.hub_id, "message": message}
        try:
            published = self._runtime.publish(self.topic_for(origin.name), envelope)
        except Exception:
            self.logger.debug("MQTT publish failed channel=%s", origin.name, exc_info=True)
            return
        if not published:
            self.logger.debug("MQTT runtime not connected; channel=%s stays in-process", origin.name)

    def _on_mqtt_event(self, event: MqttEvent) -> None:
        prefix = f"{self._topic_prefix}/"
        if not event.topic.startswith(prefix):
            return
        if event.payload.get("origin") == self.hub_id:
            return
        message = event.payload.get("message")
        if not isinstance(message, dict):
            self.logger.debug("MQTT envelope without message topic=%s", event.topic)
            return
        self.deliver_external(event.topic[len(prefix) :], message)


def snapshot_digest(payload: Any) -> str:
    """Digest of the canonical JSON form of *payload*."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SnapshotGate:
    """Forwards a payload only when it differs from the last one forwarded."""

    def __init__(self, handler: PayloadHandler) -> None:
        self._handler = handler
        self._last: str | None = None

    def __call__(self, payload: Any) -> None:
        digest = snapshot_digest(payload)
        if digest == self._last:
            return
        self._last = digest
        self._handler(payload)


class CrossClientBroadcaster:
    """Publishes local writes and listens for other clients' writes."""

    def __init__(
        self,
        local: LocalFallbackStore,
        hub: BroadcastHub,
        *,
        channel_prefix: str = "app_state",
        logger: logging.Logger | None = None,
    ) -> None:
        self._local = local
        self._hub = hub
        self._channel_prefix = channel_prefix
        self._logger = logger or _logger

    def channel_name(self, key: str) -> str:
        return f"{self._channel_prefix}:{key}"

    def publish(self, key: str, payload: Any) -> None:
        """Fire-and-forget notification; failures are logged only."""
        try:
            message = BroadcastMessage(key=key, payload=payload).model_dump(mode="json")
            channel = self._hub.open(self.channel_name(key))
        except Exception as exc:
            self._logger.warning("Unable to broadcast state for key %r: %s", key, exc)
            return
        try:
            channel.post(message)
        except Exception as exc:
            self._logger.warning("Unable to broadcast state for key %r: %s", key, exc)
        finally:
            channel.close()

    def listen(self, key: str, handler: PayloadHandler) -> Callable[[], None]:
        """Deliver other clients' writes of *key* to *handler* until unsubscribed."""
        storage_key = self._local.storage_key(key)

        def on_storage(event: StorageEvent) -> None:
            if event.key != storage_key:
                return
            handler(self._local.decode(event.new_value))

        def on_message(raw: dict[str, Any]) -> None:
            try:
                message = BroadcastMessage.model_validate(raw)
            except ValidationError:
                self._logger.debug("Ignoring malformed broadcast on %s", self.channel_name(key))
                return
            if message.key != key:
                return
            handler(message.payload)

        remove_storage = self._local.area.add_listener(on_storage)
        channel: BroadcastChannel | None = None
        remove_message: Callable[[], None] | None = None
        try:
            channel = self._hub.open(self.channel_name(key))
            remove_message = channel.add_listener(on_message)
        except Exception as exc:
            self._logger.warning("Broadcast channel unavailable for key %r: %s", key, exc)

        closed = False

        def unsubscribe() -> None:
            nonlocal closed
            if closed:
                return
            closed = True
            remove_storage()
            if remove_message is not None:
                remove_message()
            if channel is not None:
                channel.close()

        return unsubscribe
