"""Orchestration on/off switch persisted under ``system_status``."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from gridstate.models.system import SystemState
from gridstate.state.store import KeyedStateStore, Unsubscribe

SYSTEM_STATE_KEY = "system_status"


class SystemStateRepository:
    def __init__(self, store: KeyedStateStore) -> None:
        self._store = store

    async def load(self) -> SystemState | None:
        return SystemState.sanitize(await self._store.load(SYSTEM_STATE_KEY))

    async def save(self, state: SystemState) -> None:
        await self._store.save(SYSTEM_STATE_KEY, state.to_payload())

    async def subscribe(self, handler: Callable[[SystemState | None], None]) -> Unsubscribe:
        """Deliver sanitized switch states; unusable payloads arrive as ``None``."""

        def on_payload(payload: Any) -> None:
            handler(SystemState.sanitize(payload))

        return await self._store.subscribe(SYSTEM_STATE_KEY, on_payload)
