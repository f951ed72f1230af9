"""Keyed state store with remote persistence and local fallback.

Remote first, local on failure. Every fallback transition invalidates the
shared accessor so later calls retry the remote, and moves live
remote subscriptions onto the local paths so they observe the local writes
that follow. Only local-path writes are broadcast: remote writes reach other
clients through their own change-feed subscriptions.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from pydantic import ValidationError

from gridstate._result import Err, Ok
from gridstate.accessor import RemoteClientAccessor
from gridstate.models.state import RowChange, StateEntry
from gridstate.remote import RemoteHandle, RemoteSubscription
from gridstate.state.broadcast import CrossClientBroadcaster, PayloadHandler, SnapshotGate
from gridstate.state.local import LocalFallbackStore

_logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]
FallbackReporter = Callable[[str, str, str], None]


class KeyedStateStore:
    """``load``/``save``/``subscribe`` of JSON payloads by string key."""

    def __init__(
        self,
        accessor: RemoteClientAccessor,
        local: LocalFallbackStore,
        broadcaster: CrossClientBroadcaster,
        *,
        table: str = "app_state",
        logger: logging.Logger | None = None,
    ) -> None:
        self._accessor = accessor
        self._local = local
        self._broadcaster = broadcaster
        self._table = table
        self._logger = logger or _logger
        self._subscriptions: set[_StateSubscription] = set()

    @property
    def accessor(self) -> RemoteClientAccessor:
        return self._accessor

    @property
    def local(self) -> LocalFallbackStore:
        return self._local

    @property
    def live_subscriptions(self) -> int:
        return len(self._subscriptions)

    def _fallback(self, operation: str, key: str, reason: str) -> None:
        self._logger.warning("Remote %s failed for key %r, using local store: %s", operation, key, reason)
        self._accessor.invalidate()
        for subscription in list(self._subscriptions):
            subscription.fall_back()

    async def load(self, key: str) -> Any | None:
        """Return the payload stored under *key*, or ``None`` when absent."""
        with self._accessor.lease() as handle:
            if handle is None:
                return self._local.read(key)

            try:
                result = await handle.select(
                    self._table,
                    [("select", "key,payload"), ("key", f"eq.{key}"), ("limit", "1")],
                )
            except Exception as exc:
                result = Err.from_exception(exc, operation="state select")

            match result:
                case Ok(value=rows):
                    if not rows:
                        return None
                    try:
                        return StateEntry.model_validate(rows[0]).payload
                    except ValidationError as exc:
                        reason = Err.from_exception(exc, operation="state decode").reason
                case Err(reason=reason):
                    pass

            self._fallback("load", key, reason)
        return self._local.read(key)

    async def save(self, key: str, payload: Any) -> None:
        """Persist *payload* under *key*; never raises."""
        with self._accessor.lease() as handle:
            if handle is not None:
                try:
                    row = StateEntry(key=key, payload=payload).model_dump(include={"key", "payload"})
                    result = await handle.upsert(self._table, [row], on_conflict="key")
                except Exception as exc:
                    result = Err.from_exception(exc, operation="state upsert")

                match result:
                    case Ok():
                        return
                    case Err(reason=reason):
                        self._fallback("save", key, reason)

        self._local.write(key, payload)
        self._broadcaster.publish(key, payload)

    async def subscribe(self, key: str, handler: PayloadHandler) -> Unsubscribe:
        """Deliver every change of *key* to *handler* until unsubscribed.

        Deletions arrive as ``None``. Identical consecutive payloads are
        delivered once.
        """
        subscription = _StateSubscription(
            key,
            SnapshotGate(handler),
            accessor=self._accessor,
            broadcaster=self._broadcaster,
            table=self._table,
            report_fallback=self._fallback,
            on_close=self._subscriptions.discard,
            logger=self._logger,
        )
        self._subscriptions.add(subscription)
        await subscription.start()
        return subscription.unsubscribe


class _StateSubscription:
    """One subscription that can move from the remote feed to the local paths."""

    def __init__(
        self,
        key: str,
        deliver: SnapshotGate,
        *,
        accessor: RemoteClientAccessor,
        broadcaster: CrossClientBroadcaster,
        table: str,
        report_fallback: FallbackReporter,
        on_close: Callable[[_StateSubscription], None],
        logger: logging.Logger,
    ) -> None:
        self._key = key
        self._deliver = deliver
        self._accessor = accessor
        self._broadcaster = broadcaster
        self._table = table
        self._report_fallback = report_fallback
        self._on_close = on_close
        self._logger = logger
        self._handle: RemoteHandle | None = None
        self._remote: RemoteSubscription | None = None
        self._local_unsubscribe: Unsubscribe | None = None
        self._remote_failed = False
        self._closed = False

    @property
    def mode(self) -> str:
        if self._remote is not None:
            return "remote"
        if self._local_unsubscribe is not None:
            return "local"
        return "closed"

    async def start(self) -> None:
        handle = self._accessor.get()
        if handle is None:
            self._switch_to_local()
            return

        self._accessor.retain(handle)
        self._handle = handle
        try:
            remote = await handle.subscribe(
                self._table,
                channel=f"{self._table}:{self._key}",
                filter=f"key=eq.{self._key}",
                on_change=self._on_change,
                on_error=self._on_error,
            )
        except Exception as exc:
            self._fail("subscribe", str(exc))
            return

        if self._closed or self._remote_failed:
            # Torn down or failed while the join was in flight.
            _close_quietly(remote, self._logger)
            return
        self._remote = remote

    def fall_back(self) -> None:
        """Leave the remote feed and listen on the local paths instead."""
        if self._closed or self._remote_failed:
            return
        self._remote_failed = True
        remote, self._remote = self._remote, None
        if remote is not None:
            _close_quietly(remote, self._logger)
        self._release_handle()
        self._switch_to_local()

    def _fail(self, operation: str, reason: str) -> None:
        if self._closed or self._remote_failed:
            return
        self.fall_back()
        self._report_fallback(operation, self._key, reason)

    def _on_change(self, change: RowChange) -> None:
        if self._closed:
            return
        self._deliver(change.payload)

    def _on_error(self, exc: BaseException) -> None:
        self._fail("subscription", str(exc))

    def _switch_to_local(self) -> None:
        if self._closed or self._local_unsubscribe is not None:
            return
        self._local_unsubscribe = self._broadcaster.listen(self._key, self._deliver)

    def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            self._accessor.release(handle)

    def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._on_close(self)
        remote, self._remote = self._remote, None
        if remote is not None:
            _close_quietly(remote, self._logger)
        self._release_handle()
        local, self._local_unsubscribe = self._local_unsubscribe, None
        if local is not None:
            local()


def _close_quietly(subscription: RemoteSubscription, logger: logging.Logger) -> None:
    try:
        subscription.close()
    except Exception:
        logger.debug("Closing remote subscription failed", exc_info=True)
