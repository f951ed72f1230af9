from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import pytest
from conftest import FakeRemote, FakeSubscription, build_rig, failing_factory

from gridstate._result import Ok
from gridstate.models.state import ChangeEvent, RowChange
from gridstate.state.broadcast import InProcessBroadcastHub
from gridstate.state.local import MemoryStorageMedium


def _change(event: ChangeEvent, payload: Any = None) -> RowChange:
    record = None if event is ChangeEvent.DELETE else {"key": "k", "payload": payload}
    return RowChange(event=event, table="app_state", record=record, old_record={"key": "k"})


@pytest.mark.asyncio
async def test_remote_round_trip_does_not_broadcast(fake_remote: FakeRemote) -> None:
    rig = build_rig(lambda: fake_remote)
    peer_messages: list[dict[str, Any]] = []
    rig.hub.open("app_state:grid_rows").add_listener(peer_messages.append)

    await rig.store.save("grid_rows", {"rows": [1, 2]})
    loaded = await rig.store.load("grid_rows")
    await asyncio.sleep(0)

    assert loaded == {"rows": [1, 2]}
    assert fake_remote.state == {"grid_rows": {"rows": [1, 2]}}
    assert rig.local.read("grid_rows") is None
    assert peer_messages == []


@pytest.mark.asyncio
async def test_remote_load_of_missing_key_is_none(fake_remote: FakeRemote) -> None:
    rig = build_rig(lambda: fake_remote)
    rig.local.write("missing", "stale local value")

    assert await rig.store.load("missing") is None
    _, params = fake_remote.selects[-1]
    assert params == [("select", "key,payload"), ("key", "eq.missing"), ("limit", "1")]


@pytest.mark.asyncio
async def test_unavailable_remote_uses_local_path_exclusively() -> None:
    rig = build_rig(failing_factory)
    payload = {"provider": "openai", "temperature": 0.2, "tags": ["a", None]}

    await rig.store.save("settings", payload)
    assert await rig.store.load("settings") == payload
    assert await rig.store.load("never_saved") is None

    unsubscribe = await rig.store.subscribe("settings", lambda _payload: None)
    unsubscribe()
    assert rig.accessor.constructions == 0


@pytest.mark.asyncio
async def test_failed_load_invalidates_and_retries_remote_next_time(caplog: pytest.LogCaptureFixture) -> None:
    built: list[FakeRemote] = []

    def factory() -> FakeRemote:
        remote = FakeRemote(state={"k": "remote value"}, fail_select=not built)
        built.append(remote)
        return remote

    rig = build_rig(factory)
    rig.local.write("k", "local value")

    with caplog.at_level(logging.WARNING, logger="gridstate.state.store"):
        assert await rig.store.load("k") == "local value"
    assert "using local store" in caplog.text
    assert rig.accessor.cached is None

    assert await rig.store.load("k") == "remote value"
    assert rig.accessor.constructions == 2


@pytest.mark.asyncio
async def test_failed_save_writes_locally_and_broadcasts(fake_remote: FakeRemote) -> None:
    fake_remote.fail_upsert = True
    rig = build_rig(lambda: fake_remote)
    peer_messages: list[dict[str, Any]] = []
    rig.hub.open("app_state:k").add_listener(peer_messages.append)

    await rig.store.save("k", {"v": 1})
    await asyncio.sleep(0)

    assert rig.local.read("k") == {"v": 1}
    assert peer_messages == [{"key": "k", "payload": {"v": 1}}]
    assert rig.accessor.cached is None


@pytest.mark.asyncio
async def test_corrupt_local_entry_loads_as_none_and_is_removed() -> None:
    rig = build_rig(failing_factory)
    rig.area.set_item("app_state:grid_rows", "<<not json>>")

    assert await rig.store.load("grid_rows") is None
    assert rig.area.get_item("app_state:grid_rows") is None


@pytest.mark.asyncio
async def test_local_save_reaches_concurrent_subscriber_once() -> None:
    medium = MemoryStorageMedium()
    hub = InProcessBroadcastHub()
    first = build_rig(failing_factory, medium=medium, hub=hub)
    second = build_rig(failing_factory, medium=medium, hub=hub)
    received: list[Any] = []
    unsubscribe = await second.store.subscribe("grid_rows", received.append)

    await first.store.save("grid_rows", {"rows": 5})
    await asyncio.sleep(0)

    assert received == [{"rows": 5}]

    unsubscribe()
    unsubscribe()
    await first.store.save("grid_rows", {"rows": 6})
    await asyncio.sleep(0)
    assert received == [{"rows": 5}]


@pytest.mark.asyncio
async def test_remote_subscription_delivers_changes(fake_remote: FakeRemote) -> None:
    rig = build_rig(lambda: fake_remote)
    received: list[Any] = []

    unsubscribe = await rig.store.subscribe("k", received.append)
    subscription = fake_remote.subscriptions[0]
    assert subscription.filter == "key=eq.k"

    subscription.on_change(_change(ChangeEvent.INSERT, {"v": 1}))
    subscription.on_change(_change(ChangeEvent.UPDATE, {"v": 1}))
    subscription.on_change(_change(ChangeEvent.UPDATE, {"v": 2}))
    subscription.on_change(_change(ChangeEvent.DELETE))

    assert received == [{"v": 1}, {"v": 2}, None]

    unsubscribe()
    unsubscribe()
    assert subscription.close_calls == 1
    subscription.on_change(_change(ChangeEvent.UPDATE, {"v": 3}))
    assert received == [{"v": 1}, {"v": 2}, None]


@pytest.mark.asyncio
async def test_subscribe_setup_failure_switches_to_local_listener() -> None:
    medium = MemoryStorageMedium()
    hub = InProcessBroadcastHub()
    remote = FakeRemote(fail_subscribe=True)
    subscriber = build_rig(lambda: remote, medium=medium, hub=hub)
    writer = build_rig(failing_factory, medium=medium, hub=hub)
    received: list[Any] = []

    unsubscribe = await subscriber.store.subscribe("k", received.append)
    assert subscriber.accessor.cached is None

    await writer.store.save("k", "local")
    await asyncio.sleep(0)
    assert received == ["local"]
    unsubscribe()


@pytest.mark.asyncio
async def test_subscription_error_after_join_falls_back_and_keeps_delivering(fake_remote: FakeRemote) -> None:
    medium = MemoryStorageMedium()
    hub = InProcessBroadcastHub()
    subscriber = build_rig(lambda: fake_remote, medium=medium, hub=hub)
    writer = build_rig(failing_factory, medium=medium, hub=hub)
    received: list[Any] = []

    unsubscribe = await subscriber.store.subscribe("k", received.append)
    subscription = fake_remote.subscriptions[0]
    subscription.on_change(_change(ChangeEvent.UPDATE, "remote"))

    subscription.on_error(RuntimeError("channel closed"))
    subscription.on_error(RuntimeError("channel closed again"))
    assert subscription.close_calls == 1
    assert subscriber.accessor.cached is None

    await writer.store.save("k", "local")
    await asyncio.sleep(0)
    assert received == ["remote", "local"]

    unsubscribe()
    await writer.store.save("k", "after")
    await asyncio.sleep(0)
    assert received == ["remote", "local"]
    assert hub.open_count("app_state:k") == 0


class _FailsDuringJoin(FakeRemote):
    async def subscribe(
        self,
        table: str,
        *,
        channel: str,
        filter: str,
        on_change: Callable[[RowChange], None],
        on_error: Callable[[BaseException], None],
    ) -> FakeSubscription:
        subscription = await super().subscribe(
            table, channel=channel, filter=filter, on_change=on_change, on_error=on_error
        )
        on_error(RuntimeError("dropped while joining"))
        return subscription


@pytest.mark.asyncio
async def test_error_raised_while_joining_closes_late_subscription() -> None:
    remote = _FailsDuringJoin()
    rig = build_rig(lambda: remote)
    received: list[Any] = []

    unsubscribe = await rig.store.subscribe("k", received.append)

    assert remote.subscriptions[0].close_calls == 1
    assert rig.hub.open_count("app_state:k") == 1
    unsubscribe()
    assert rig.hub.open_count("app_state:k") == 0


@pytest.mark.asyncio
async def test_save_sends_state_entry_rows(fake_remote: FakeRemote) -> None:
    rig = build_rig(lambda: fake_remote)

    await rig.store.save("grid_rows", [{"prompt": "hi"}])

    assert fake_remote.upserts == [{"key": "grid_rows", "payload": [{"prompt": "hi"}]}]


@pytest.mark.asyncio
async def test_invalid_remote_row_falls_back_to_local(caplog: pytest.LogCaptureFixture) -> None:
    class _KeylessRows(FakeRemote):
        async def select(self, table: str, params: Any) -> Any:
            return Ok([{"payload": "no key column"}])

    remote = _KeylessRows()
    rig = build_rig(lambda: remote)
    rig.local.write("k", "local value")

    with caplog.at_level(logging.WARNING, logger="gridstate.state.store"):
        assert await rig.store.load("k") == "local value"
    assert "state decode failed" in caplog.text
    assert rig.accessor.cached is None


@pytest.mark.asyncio
async def test_raising_select_falls_back_to_local() -> None:
    remote = FakeRemote(raise_on_select=True)
    rig = build_rig(lambda: remote)
    rig.local.write("k", {"v": "local"})

    assert await rig.store.load("k") == {"v": "local"}
    assert rig.accessor.cached is None


@pytest.mark.asyncio
async def test_raising_upsert_writes_locally_and_broadcasts() -> None:
    remote = FakeRemote(raise_on_upsert=True)
    rig = build_rig(lambda: remote)
    peer_messages: list[dict[str, Any]] = []
    rig.hub.open("app_state:k").add_listener(peer_messages.append)

    await rig.store.save("k", {"v": 1})
    await asyncio.sleep(0)

    assert rig.local.read("k") == {"v": 1}
    assert peer_messages == [{"key": "k", "payload": {"v": 1}}]
    assert rig.accessor.cached is None


@pytest.mark.asyncio
async def test_remote_subscriber_observes_save_that_fell_back(fake_remote: FakeRemote) -> None:
    rig = build_rig(lambda: fake_remote)
    received: list[Any] = []
    unsubscribe = await rig.store.subscribe("k", received.append)
    subscription = fake_remote.subscriptions[0]

    fake_remote.fail_upsert = True
    await rig.store.save("k", {"v": 1})
    await asyncio.sleep(0)

    assert received == [{"v": 1}]
    assert subscription.close_calls == 1
    assert rig.hub.open_count("app_state:k") == 1

    unsubscribe()
    assert rig.hub.open_count("app_state:k") == 0
    assert rig.store.live_subscriptions == 0


@pytest.mark.asyncio
async def test_failing_operations_do_not_leak_remote_handles() -> None:
    built: list[FakeRemote] = []

    def factory() -> FakeRemote:
        built.append(FakeRemote(fail_select=True))
        return built[-1]

    rig = build_rig(factory)
    for _ in range(20):
        await rig.store.load("k")
    await asyncio.sleep(0)

    assert len(built) == 20
    assert all(remote.closed for remote in built)
    assert rig.accessor.retired_count == 0


@pytest.mark.asyncio
async def test_subscription_keeps_its_handle_open_until_unsubscribed(fake_remote: FakeRemote) -> None:
    rig = build_rig(lambda: fake_remote)
    unsubscribe = await rig.store.subscribe("k", lambda _payload: None)

    rig.accessor.invalidate()
    await asyncio.sleep(0)
    assert fake_remote.closed is False
    assert rig.accessor.retired_count == 1

    unsubscribe()
    await asyncio.sleep(0)
    assert fake_remote.closed is True
    assert rig.accessor.retired_count == 0
