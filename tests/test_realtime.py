from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from aiohttp import WSMsgType, web
from aiohttp.test_utils import TestServer

from gridstate._realtime import (
    RealtimeMessage,
    build_join_message,
    extract_row_change,
    parse_realtime_message,
    realtime_url,
)
from gridstate.config import GridStateConfig
from gridstate.exceptions import RealtimeError
from gridstate.models.state import ChangeEvent, RowChange
from gridstate.remote import RemoteClient


def test_realtime_url_switches_scheme() -> None:
    assert realtime_url("https://demo.supabase.co/") == "wss://demo.supabase.co/realtime/v1/websocket"
    assert realtime_url("http://localhost:54321") == "ws://localhost:54321/realtime/v1/websocket"


def test_join_message_carries_postgres_changes_filter() -> None:
    changes = [{"event": "*", "schema": "public", "table": "app_state", "filter": "key=eq.k"}]
    message = build_join_message("realtime:app_state:k", changes, access_token="anon", ref="1")

    assert message["event"] == "phx_join"
    assert message["ref"] == message["join_ref"] == "1"
    assert message["payload"]["config"]["postgres_changes"] == changes
    assert message["payload"]["access_token"] == "anon"


@pytest.mark.parametrize("text", ["not json", "[]", '{"topic": 1, "event": "x"}', '{"event": "x"}'])
def test_parse_realtime_message_ignores_garbage(text: str) -> None:
    assert parse_realtime_message(text) is None


def test_parse_realtime_message_normalizes_payload_and_ref() -> None:
    message = parse_realtime_message('{"topic":"t","event":"phx_reply","payload":null,"ref":7}')
    assert message == RealtimeMessage(topic="t", event="phx_reply", payload={}, ref="7")


def test_extract_row_change_reads_postgres_changes_data() -> None:
    message = RealtimeMessage(
        topic="realtime:app_state:k",
        event="postgres_changes",
        payload={
            "ids": [1],
            "data": {
                "type": "UPDATE",
                "table": "app_state",
                "schema": "public",
                "record": {"key": "k", "payload": {"rows": 2}},
                "old_record": {"key": "k"},
            },
        },
    )

    change = extract_row_change(message)

    assert change is not None
    assert change.event is ChangeEvent.UPDATE
    assert change.payload == {"rows": 2}


def test_delete_change_has_no_payload() -> None:
    message = RealtimeMessage(
        topic="t",
        event="postgres_changes",
        payload={"data": {"type": "DELETE", "table": "app_state", "record": {}, "old_record": {"key": "k"}}},
    )
    change = extract_row_change(message)
    assert change is not None
    assert change.payload is None


def test_unknown_change_type_is_dropped() -> None:
    message = RealtimeMessage(topic="t", event="postgres_changes", payload={"data": {"type": "TRUNCATE"}})
    assert extract_row_change(message) is None


# ---------------------------------------------------------------------------
# Websocket channel against a local server
# ---------------------------------------------------------------------------


def _realtime_app(*, join_status: str = "ok", close_after_change: bool = False) -> tuple[web.Application, list[Any]]:
    joins: list[Any] = []

    async def handler(request: web.Request) -> web.WebSocketResponse:
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        async for msg in ws:
            if msg.type is not WSMsgType.TEXT:
                continue
            frame = json.loads(msg.data)
            if frame["event"] != "phx_join":
                continue
            joins.append({"query": dict(request.query), "frame": frame})
            await ws.send_json(
                {
                    "topic": frame["topic"],
                    "event": "phx_reply",
                    "payload": {"status": join_status, "response": {}},
                    "ref": frame["ref"],
                }
            )
            if join_status != "ok":
                continue
            await ws.send_json(
                {
                    "topic": frame["topic"],
                    "event": "postgres_changes",
                    "payload": {
                        "data": {
                            "type": "INSERT",
                            "table": "app_state",
                            "record": {"key": "k", "payload": {"v": 1}},
                            "old_record": None,
                        }
                    },
                    "ref": None,
                }
            )
            if close_after_change:
                await ws.close()
        return ws

    app = web.Application()
    app.router.add_get("/realtime/v1/websocket", handler)
    return app, joins


async def _wait_for(predicate: Any, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_subscribe_joins_and_delivers_changes() -> None:
    app, joins = _realtime_app()
    changes: list[RowChange] = []
    errors: list[BaseException] = []

    async with TestServer(app) as server:
        config = GridStateConfig(remote_url=str(server.make_url("/")).rstrip("/"), remote_key="anon-key")
        client = RemoteClient(config)
        try:
            subscription = await client.subscribe(
                "app_state",
                channel="app_state:k",
                filter="key=eq.k",
                on_change=changes.append,
                on_error=errors.append,
            )
            await _wait_for(lambda: changes)
            subscription.close()
            subscription.close()
            await asyncio.sleep(0.05)
        finally:
            await client.close()

    assert changes[0].payload == {"v": 1}
    assert errors == []
    join = joins[0]
    assert join["query"] == {"apikey": "anon-key", "vsn": "1.0.0"}
    assert join["frame"]["topic"] == "realtime:app_state:k"
    assert join["frame"]["payload"]["config"]["postgres_changes"] == [
        {"event": "*", "schema": "public", "table": "app_state", "filter": "key=eq.k"}
    ]


@pytest.mark.asyncio
async def test_rejected_join_raises() -> None:
    app, _ = _realtime_app(join_status="error")

    async with TestServer(app) as server:
        config = GridStateConfig(
            remote_url=str(server.make_url("/")).rstrip("/"),
            remote_key="anon-key",
            realtime_join_timeout=2.0,
        )
        client = RemoteClient(config)
        try:
            with pytest.raises(RealtimeError):
                await client.subscribe(
                    "app_state",
                    channel="app_state:k",
                    filter="key=eq.k",
                    on_change=lambda _change: None,
                    on_error=lambda _exc: None,
                )
        finally:
            await client.close()


@pytest.mark.asyncio
async def test_server_close_after_join_reports_error_once() -> None:
    app, _ = _realtime_app(close_after_change=True)
    errors: list[BaseException] = []

    async with TestServer(app) as server:
        config = GridStateConfig(remote_url=str(server.make_url("/")).rstrip("/"), remote_key="anon-key")
        client = RemoteClient(config)
        try:
            subscription = await client.subscribe(
                "app_state",
                channel="app_state:k",
                filter="key=eq.k",
                on_change=lambda _change: None,
                on_error=errors.append,
            )
            await _wait_for(lambda: errors)
            await asyncio.sleep(0.05)
            subscription.close()
            await asyncio.sleep(0.05)
        finally:
            await client.close()

    assert len(errors) == 1
    assert isinstance(errors[0], RealtimeError)
