from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import FakeRemote

from gridstate.accessor import RemoteClientAccessor
from gridstate.exceptions import GridStateConfigError


def test_get_memoizes_handle_until_invalidated() -> None:
    built: list[FakeRemote] = []

    def factory() -> FakeRemote:
        built.append(FakeRemote())
        return built[-1]

    accessor = RemoteClientAccessor(factory)
    first = accessor.get()
    assert accessor.get() is first
    assert accessor.constructions == 1

    accessor.invalidate()
    second = accessor.get()
    assert second is not first
    assert accessor.constructions == 2


def test_construction_failure_is_logged_and_retried(caplog: pytest.LogCaptureFixture) -> None:
    attempts = 0

    def factory() -> FakeRemote:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise GridStateConfigError("Remote store URL is not set.")
        return FakeRemote()

    accessor = RemoteClientAccessor(factory)
    with caplog.at_level(logging.WARNING, logger="gridstate.accessor"):
        assert accessor.get() is None
    assert "Remote store unavailable" in caplog.text

    assert accessor.get() is not None
    assert attempts == 2


def test_invalidate_without_handle_is_a_no_op() -> None:
    accessor = RemoteClientAccessor(FakeRemote)
    accessor.invalidate()
    accessor.invalidate()
    assert accessor.cached is None


@pytest.mark.asyncio
async def test_invalidated_handle_without_leases_is_closed() -> None:
    accessor = RemoteClientAccessor(FakeRemote)
    handle = accessor.get()
    assert isinstance(handle, FakeRemote)

    accessor.invalidate()
    await asyncio.sleep(0)

    assert handle.closed is True
    assert accessor.retired_count == 0


@pytest.mark.asyncio
async def test_leased_handle_is_closed_when_last_lease_ends() -> None:
    accessor = RemoteClientAccessor(FakeRemote)
    with accessor.lease() as outer:
        assert isinstance(outer, FakeRemote)
        with accessor.lease() as inner:
            assert inner is outer
            accessor.invalidate()
        await asyncio.sleep(0)
        assert outer.closed is False
        assert accessor.retired_count == 1

    await asyncio.sleep(0)
    assert outer.closed is True
    assert accessor.retired_count == 0


def test_lease_yields_none_when_construction_fails() -> None:
    def factory() -> FakeRemote:
        raise GridStateConfigError("Remote store URL is not set.")

    accessor = RemoteClientAccessor(factory)
    with accessor.lease() as handle:
        assert handle is None


@pytest.mark.asyncio
async def test_aclose_closes_current_and_still_leased_handles() -> None:
    accessor = RemoteClientAccessor(FakeRemote)
    retired = accessor.get()
    assert isinstance(retired, FakeRemote)
    accessor.retain(retired)
    accessor.invalidate()
    current = accessor.get()
    assert isinstance(current, FakeRemote)
    assert retired.closed is False

    await accessor.aclose()

    assert retired.closed is True
    assert current.closed is True
    assert accessor.cached is None
    assert accessor.retired_count == 0
