"""Realtime change-feed channel over the remote store's websocket endpoint.

Speaks the Phoenix channel protocol used by Supabase Realtime: one socket per
channel, a ``phx_join`` carrying the ``postgres_changes`` filter, periodic
heartbeats and ``postgres_changes`` events carrying row data.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import aiohttp
from pydantic import ValidationError

from gridstate.exceptions import RealtimeError
from gridstate.models.state import RowChange

PROTOCOL_VSN = "1.0.0"


@dataclass(frozen=True)
class RealtimeMessage:
    topic: str
    event: str
    payload: dict[str, Any]
    ref: str | None = None


def realtime_url(remote_url: str) -> str:
    """Websocket endpoint for a REST base URL."""
    base = remote_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return f"{base}/realtime/v1/websocket"


def build_join_message(
    topic: str,
    changes: list[dict[str, str]],
    *,
    access_token: str,
    ref: str,
) -> dict[str, Any]:
    return {
        "topic": topic,
        "event": "phx_join",
        "payload": {
            "config": {
                "broadcast": {"ack": False, "self": False},
                "presence": {"key": ""},
                "postgres_changes": changes,
            },
            "access_token": access_token,
        },
        "ref": ref,
        "join_ref": ref,
    }


def parse_realtime_message(text: str) -> RealtimeMessage | None:
    """Decode one socket frame; ``None`` for anything that is not a message."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(raw, dict):
        return None
    topic = raw.get("topic")
    event = raw.get("event")
    if not isinstance(topic, str) or not isinstance(event, str):
        return None
    payload = raw.get("payload")
    ref = raw.get("ref")
    return RealtimeMessage(
        topic=topic,
        event=event,
        payload=payload if isinstance(payload, dict) else {},
        ref=str(ref) if ref is not None else None,
    )


def extract_row_change(message: RealtimeMessage) -> RowChange | None:
    """Normalize a ``postgres_changes`` payload into a ``RowChange``."""
    data: Mapping[str, Any] = message.payload.get("data", message.payload)
    if not isinstance(data, Mapping):
        return None
    event = data.get("type") or data.get("eventType")
    try:
        return RowChange.model_validate(
            {
                "event": event,
                "table": data.get("table") or "",
                "record": data.get("record") or None,
                "old_record": data.get("old_record") or None,
            }
        )
    except ValidationError:
        return None


class RealtimeChannel:
    """One joined realtime channel delivering row changes to a callback.

    ``join`` raises on setup failure. Afterwards, failures are reported once
    through ``on_error``; ``close`` is idempotent and safe after a failure.
    """

    def __init__(
        self,
        *,
        http_session: aiohttp.ClientSession,
        url: str,
        api_key: str,
        topic: str,
        changes: list[dict[str, str]],
        on_change: Callable[[RowChange], None],
        on_error: Callable[[BaseException], None],
        heartbeat_interval: float = 25.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._http = http_session
        self._url = url
        self._api_key = api_key
        self._topic = topic
        self._changes = changes
        self._on_change = on_change
        self._on_error = on_error
        self._heartbeat_interval = heartbeat_interval
        self._logger = logger or logging.getLogger(__name__)
        self._refs = itertools.count(1)
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._heartbeat: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[Any] | None = None
        self._closing = False
        self._failed = False

    @property
    def topic(self) -> str:
        return self._topic

    @property
    def is_active(self) -> bool:
        return self._ws is not None and not self._closing and not self._failed

    def _next_ref(self) -> str:
        return str(next(self._refs))

    async def join(self, timeout: float) -> None:
        """Open the socket and join the channel, raising on any failure."""
        self._logger.debug("Realtime join requested topic=%s", self._topic)
        try:
            ws = await asyncio.wait_for(
                self._http.ws_connect(self._url, params={"apikey": self._api_key, "vsn": PROTOCOL_VSN}),
                timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RealtimeError(f"Realtime connect failed: {exc}", topic=self._topic) from exc

        ref = self._next_ref()
        try:
            await ws.send_json(build_join_message(self._topic, self._changes, access_token=self._api_key, ref=ref))
            await asyncio.wait_for(self._await_join_reply(ws, ref), timeout)
        except BaseException as exc:
            await ws.close()
            if isinstance(exc, RealtimeError):
                raise
            if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
                raise RealtimeError(f"Realtime join failed: {exc!r}", topic=self._topic) from exc
            raise

        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws))
        self._heartbeat = asyncio.create_task(self._heartbeat_loop(ws))
        self._logger.debug("Realtime channel joined topic=%s", self._topic)

    async def _await_join_reply(self, ws: aiohttp.ClientWebSocketResponse, ref: str) -> None:
        async for msg in ws:
            if msg.type is not aiohttp.WSMsgType.TEXT:
                continue
            message = parse_realtime_message(msg.data)
            if message is None or message.event != "phx_reply" or message.ref != ref:
                continue
            status = message.payload.get("status")
            if status == "ok":
                return
            raise RealtimeError(
                f"Realtime join rejected: status={status} response={message.payload.get('response')}",
                topic=self._topic,
            )
        raise RealtimeError("Realtime socket closed during join", topic=self._topic)

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type is aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type is aiohttp.WSMsgType.ERROR:
                    self._fail(RealtimeError(f"Realtime socket error: {ws.exception()!r}", topic=self._topic))
                    return
            self._fail(RealtimeError("Realtime socket closed", topic=self._topic))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(exc)
        finally:
            if not ws.closed:
                await ws.close()

    def _dispatch(self, text: str) -> None:
        message = parse_realtime_message(text)
        if message is None:
            self._logger.debug("Realtime frame ignored (not a message)")
            return
        if message.topic != self._topic:
            return

        match message.event:
            case "postgres_changes":
                change = extract_row_change(message)
                if change is None:
                    self._logger.debug("Realtime change payload not understood topic=%s", self._topic)
                    return
                try:
                    self._on_change(change)
                except Exception:
                    self._logger.warning("Realtime change handler failed topic=%s", self._topic, exc_info=True)
            case "phx_error" | "phx_close":
                self._fail(RealtimeError(f"Realtime channel {message.event}", topic=self._topic))
            case "system":
                if message.payload.get("status") == "error":
                    detail = message.payload.get("message", "")
                    self._fail(RealtimeError(f"Realtime channel error: {detail}", topic=self._topic))
            case _:
                return

    async def _heartbeat_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await ws.send_json({"topic": "phoenix", "event": "heartbeat", "payload": {}, "ref": self._next_ref()})
            except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
                self._fail(exc)
                return

    def _fail(self, exc: BaseException) -> None:
        if self._closing or self._failed:
            return
        self._failed = True
        self._logger.warning("Realtime channel failed topic=%s: %s", self._topic, exc)
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        try:
            self._on_error(exc)
        except Exception:
            self._logger.warning("Realtime error handler failed topic=%s", self._topic, exc_info=True)

    def close(self) -> None:
        """Stop delivering changes and release the socket."""
        if self._closing:
            return
        self._closing = True
        for task in (self._heartbeat, self._reader):
            if task is not None and not task.done():
                task.cancel()
        self._heartbeat = None
        self._reader = None
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            with contextlib.suppress(RuntimeError):
                self._close_task = asyncio.get_running_loop().create_task(ws.close())
        self._logger.debug("Realtime channel closed topic=%s", self._topic)
