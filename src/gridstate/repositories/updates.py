"""Cached updates listing and its filters, persisted under ``updates_cache``."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from gridstate.models.updates import PersistedUpdatesState
from gridstate.query.cursor import is_valid_cursor
from gridstate.state.store import KeyedStateStore, Unsubscribe

_logger = logging.getLogger(__name__)

UPDATES_CACHE_KEY = "updates_cache"


class UpdatesStateRepository:
    """Load, save and follow the persisted updates panel state.

    Loaded payloads are sanitized: entries that no longer validate are
    dropped and a cursor that does not decode is reset, so a restored panel
    restarts pagination from the first page instead of failing.
    """

    def __init__(self, store: KeyedStateStore, *, logger: logging.Logger | None = None) -> None:
        self._store = store
        self._logger = logger or _logger

    def _sanitize(self, payload: Any) -> PersistedUpdatesState | None:
        state = PersistedUpdatesState.sanitize(payload)
        if state is None:
            return None
        if not is_valid_cursor(state.next_cursor):
            self._logger.warning("Discarding invalid cursor from persisted updates state")
            return state.model_copy(update={"next_cursor": None})
        return state

    async def load(self) -> PersistedUpdatesState | None:
        return self._sanitize(await self._store.load(UPDATES_CACHE_KEY))

    async def save(self, state: PersistedUpdatesState) -> None:
        await self._store.save(UPDATES_CACHE_KEY, state.to_payload())

    async def subscribe(self, handler: Callable[[PersistedUpdatesState | None], None]) -> Unsubscribe:
        def on_payload(payload: Any) -> None:
            handler(self._sanitize(payload))

        return await self._store.subscribe(UPDATES_CACHE_KEY, on_payload)
