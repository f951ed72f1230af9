"""Lazily constructed, invalidatable handle to the remote store."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterator

from gridstate.remote import RemoteHandle

_logger = logging.getLogger(__name__)

HandleFactory = Callable[[], RemoteHandle]


class RemoteClientAccessor:
    """Owns the cached remote handle.

    ``get`` memoizes a successfully constructed handle until ``invalidate`` is
    called. Construction failures are logged and reported as ``None`` and are
    not memoized, so the next ``get`` tries again.

    Callers that keep using a handle across awaits take a lease on it
    (`lease`, or `retain`/`release`). An invalidated handle is closed as soon
    as its last lease is released; handles still leased when the accessor is
    closed are closed by ``aclose``.
    """

    def __init__(self, factory: HandleFactory, *, logger: logging.Logger | None = None) -> None:
        self._factory = factory
        self._logger = logger or _logger
        self._handle: RemoteHandle | None = None
        self._leases: dict[int, int] = {}
        self._retired: dict[int, RemoteHandle] = {}
        self._closing: set[asyncio.Task[None]] = set()
        self._constructions = 0

    @property
    def constructions(self) -> int:
        """Number of successful handle constructions so far."""
        return self._constructions

    @property
    def cached(self) -> RemoteHandle | None:
        return self._handle

    @property
    def retired_count(self) -> int:
        """Invalidated handles still open because a lease holds them."""
        return len(self._retired)

    def get(self) -> RemoteHandle | None:
        if self._handle is not None:
            return self._handle
        try:
            handle = self._factory()
        except Exception as exc:
            self._logger.warning("Remote store unavailable: %s", exc)
            return None
        self._handle = handle
        self._constructions += 1
        return handle

    def retain(self, handle: RemoteHandle) -> None:
        self._leases[id(handle)] = self._leases.get(id(handle), 0) + 1

    def release(self, handle: RemoteHandle) -> None:
        remaining = self._leases.get(id(handle), 0) - 1
        if remaining > 0:
            self._leases[id(handle)] = remaining
            return
        self._leases.pop(id(handle), None)
        retired = self._retired.pop(id(handle), None)
        if retired is not None:
            self._schedule_close(retired)

    @contextlib.contextmanager
    def lease(self) -> Iterator[RemoteHandle | None]:
        """``get`` a handle and hold it for the duration of the block."""
        handle = self.get()
        if handle is None:
            yield None
            return
        self.retain(handle)
        try:
            yield handle
        finally:
            self.release(handle)

    def invalidate(self) -> None:
        """Drop the cached handle so the next ``get`` builds a fresh one."""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        self._logger.debug("Remote handle invalidated")
        if self._leases.get(id(handle)):
            self._retired[id(handle)] = handle
        else:
            self._schedule_close(handle)

    def _schedule_close(self, handle: RemoteHandle) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to close on; aclose picks it up.
            self._retired[id(handle)] = handle
            return
        task = loop.create_task(self._close(handle))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    async def _close(self, handle: RemoteHandle) -> None:
        try:
            await handle.close()
        except Exception:
            self._logger.debug("Remote handle close failed", exc_info=True)

    async def aclose(self) -> None:
        """Close the current handle and every retired one."""
        pending = list(self._closing)
        if pending:
            await asyncio.gather(*pending)
        handles = list(self._retired.values())
        self._retired = {}
        self._leases = {}
        if self._handle is not None:
            handles.append(self._handle)
            self._handle = None
        for handle in handles:
            await self._close(handle)
