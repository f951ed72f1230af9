"""Remote store handle: PostgREST reads/writes plus realtime row changes.

`RemoteHandle` is the structural interface the state store and pagination
engine depend on; `RemoteClient` is the aiohttp-backed implementation. Every
data operation reports a tagged `Result` instead of raising.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol

import aiohttp

from gridstate._realtime import RealtimeChannel, realtime_url
from gridstate._result import Err, Ok, Result
from gridstate._transport import RestTransport, Transport
from gridstate.config import GridStateConfig
from gridstate.exceptions import GridStateConfigError, GridStateError
from gridstate.models.state import RowChange

_logger = logging.getLogger(__name__)


class RemoteSubscription(Protocol):
    def close(self) -> None:
        ...


class RemoteHandle(Protocol):
    async def select(self, table: str, params: Sequence[tuple[str, str]]) -> Result[list[dict[str, Any]]]:
        ...

    async def upsert(self, table: str, rows: list[dict[str, Any]], *, on_conflict: str) -> Result[None]:
        ...

    async def subscribe(
        self,
        table: str,
        *,
        channel: str,
        filter: str,
        on_change: Callable[[RowChange], None],
        on_error: Callable[[BaseException], None],
    ) -> RemoteSubscription:
        ...

    async def close(self) -> None:
        ...


class RemoteClient:
    """Handle to the remote store.

    Construction validates configuration only; the HTTP session is opened on
    first use so a handle can be built outside a running loop.
    """

    def __init__(
        self,
        config: GridStateConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        transport: Transport | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not config.remote_url:
            raise GridStateConfigError(
                "Remote store URL is not set. Define GRIDSTATE_REMOTE_URL to enable remote persistence."
            )
        if not config.remote_key:
            raise GridStateConfigError(
                "Remote store key is not set. Define GRIDSTATE_REMOTE_KEY to enable remote persistence."
            )
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._transport = transport
        self._logger = logger or _logger

    def _require_session(self) -> aiohttp.ClientSession:
        if self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        return self._http_session

    def _require_transport(self) -> Transport:
        if self._transport is None:
            self._transport = RestTransport(self._config, self._require_session())
        return self._transport

    async def select(self, table: str, params: Sequence[tuple[str, str]]) -> Result[list[dict[str, Any]]]:
        try:
            body = await self._require_transport().request("GET", table, params=params)
        except GridStateError as exc:
            return Err.from_exception(exc, operation=f"select {table}")
        if body is None:
            return Ok([])
        if not isinstance(body, list):
            return Err(f"select {table} returned {type(body).__name__}, expected a list of rows")
        return Ok([row for row in body if isinstance(row, dict)])

    async def upsert(self, table: str, rows: list[dict[str, Any]], *, on_conflict: str) -> Result[None]:
        try:
            await self._require_transport().request(
                "POST",
                table,
                params=[("on_conflict", on_conflict)],
                json_body=rows,
                prefer="resolution=merge-duplicates,return=minimal",
            )
        except (GridStateError, TypeError, ValueError) as exc:
            return Err.from_exception(exc, operation=f"upsert {table}")
        return Ok(None)

    async def subscribe(
        self,
        table: str,
        *,
        channel: str,
        filter: str,
        on_change: Callable[[RowChange], None],
        on_error: Callable[[BaseException], None],
    ) -> RemoteSubscription:
        """Join a realtime channel for row changes matching *filter*.

        Raises `RealtimeError` when the channel cannot be joined.
        """
        assert self._config.remote_url is not None  # noqa: S101
        realtime = RealtimeChannel(
            http_session=self._require_session(),
            url=realtime_url(self._config.remote_url),
            api_key=self._config.remote_key or "",
            topic=f"realtime:{channel}",
            changes=[{"event": "*", "schema": self._config.schema, "table": table, "filter": filter}],
            on_change=on_change,
            on_error=on_error,
            heartbeat_interval=self._config.realtime_heartbeat,
            logger=self._logger,
        )
        await realtime.join(self._config.realtime_join_timeout)
        return realtime

    async def close(self) -> None:
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
        self._http_session = None
        self._transport = None
