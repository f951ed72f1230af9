from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from gridstate._result import Err, Ok, Result
from gridstate.accessor import RemoteClientAccessor
from gridstate.exceptions import GridStateConfigError, RealtimeError
from gridstate.models.state import RowChange
from gridstate.state.broadcast import CrossClientBroadcaster, InProcessBroadcastHub
from gridstate.state.local import LocalFallbackStore, MemoryStorageArea, MemoryStorageMedium
from gridstate.state.store import KeyedStateStore


@dataclass
class FakeSubscription:
    on_change: Callable[[RowChange], None]
    on_error: Callable[[BaseException], None]
    filter: str
    close_calls: int = 0

    def close(self) -> None:
        self.close_calls += 1


@dataclass
class FakeRemote:
    """In-memory stand-in for the remote store handle."""

    state: dict[str, Any] = field(default_factory=dict)
    records: list[dict[str, Any]] = field(default_factory=list)
    fail_select: bool = False
    fail_upsert: bool = False
    fail_subscribe: bool = False
    raise_on_select: bool = False
    raise_on_upsert: bool = False
    calls: dict[str, int] = field(default_factory=dict)
    selects: list[tuple[str, list[tuple[str, str]]]] = field(default_factory=list)
    upserts: list[dict[str, Any]] = field(default_factory=list)
    subscriptions: list[FakeSubscription] = field(default_factory=list)
    closed: bool = False

    def _record_call(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1

    async def select(self, table: str, params: Any) -> Result[list[dict[str, Any]]]:
        self._record_call("select")
        self.selects.append((table, list(params)))
        if self.raise_on_select:
            raise ConnectionResetError("connection reset by peer")
        if self.fail_select:
            return Err("select failed: connection refused")
        if table == "app_state":
            key = next(value[len("eq.") :] for name, value in params if name == "key")
            return Ok([{"key": key, "payload": self.state[key]}] if key in self.state else [])
        return Ok([dict(row) for row in self.records])

    async def upsert(self, table: str, rows: list[dict[str, Any]], *, on_conflict: str) -> Result[None]:
        self._record_call("upsert")
        if self.raise_on_upsert:
            raise ConnectionResetError("connection reset by peer")
        if self.fail_upsert:
            return Err("upsert failed: connection refused")
        self.upserts.extend(rows)
        for row in rows:
            self.state[row[on_conflict]] = row["payload"]
        return Ok(None)

    async def subscribe(
        self,
        table: str,
        *,
        channel: str,
        filter: str,
        on_change: Callable[[RowChange], None],
        on_error: Callable[[BaseException], None],
    ) -> FakeSubscription:
        self._record_call("subscribe")
        if self.fail_subscribe:
            raise RealtimeError("join rejected", topic=f"realtime:{channel}")
        subscription = FakeSubscription(on_change=on_change, on_error=on_error, filter=filter)
        self.subscriptions.append(subscription)
        return subscription

    async def close(self) -> None:
        self.closed = True


def failing_factory() -> FakeRemote:
    raise GridStateConfigError("Remote store URL is not set.")


@dataclass
class StoreRig:
    store: KeyedStateStore
    accessor: RemoteClientAccessor
    local: LocalFallbackStore
    area: MemoryStorageArea
    hub: InProcessBroadcastHub


def build_rig(
    factory: Callable[[], Any],
    *,
    medium: MemoryStorageMedium | None = None,
    hub: InProcessBroadcastHub | None = None,
) -> StoreRig:
    accessor = RemoteClientAccessor(factory)
    area = MemoryStorageArea(medium)
    local = LocalFallbackStore(area)
    hub = hub or InProcessBroadcastHub()
    store = KeyedStateStore(accessor, local, CrossClientBroadcaster(local, hub))
    return StoreRig(store=store, accessor=accessor, local=local, area=area, hub=hub)


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()
