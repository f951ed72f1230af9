"""High-level async client for gridstate."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import Any

from gridstate._mqtt import MqttEvent, MqttRuntime
from gridstate.accessor import RemoteClientAccessor
from gridstate.config import GridStateConfig
from gridstate.exceptions import GridStateError
from gridstate.models.records import ListedRecord, ListQuery, ListResult
from gridstate.query.engine import PaginationEngine
from gridstate.query.static import BUNDLED_RECORDS
from gridstate.remote import RemoteClient
from gridstate.repositories.system import SystemStateRepository
from gridstate.repositories.updates import UpdatesStateRepository
from gridstate.state.broadcast import BroadcastHub, CrossClientBroadcaster, InProcessBroadcastHub, MqttBroadcastHub
from gridstate.state.local import FileStorageArea, LocalFallbackStore, MemoryStorageArea, StorageArea
from gridstate.state.store import KeyedStateStore, Unsubscribe

_logger = logging.getLogger(__name__)


class GridStateClient:
    """Async facade over the keyed state store and the records listing.

    Usage::

        async with GridStateClient(GridStateConfig.from_env()) as client:
            await client.save_state("grid_rows", rows)
            page = await client.list_records(limit=20)

    Collaborators left as ``None`` are built from configuration when the
    context is entered. Injected ones are used as given and never closed.
    """

    def __init__(
        self,
        config: GridStateConfig | None = None,
        *,
        accessor: RemoteClientAccessor | None = None,
        storage: StorageArea | None = None,
        hub: BroadcastHub | None = None,
        dataset: Sequence[ListedRecord] = BUNDLED_RECORDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config or GridStateConfig.from_env()
        self._logger = logger or _logger
        self._external_accessor = accessor is not None
        self._accessor = accessor
        self._storage = storage
        self._hub = hub
        self._dataset = tuple(dataset)
        self._mqtt_hub: MqttBroadcastHub | None = None
        self._store: KeyedStateStore | None = None
        self._engine: PaginationEngine | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> GridStateClient:
        config = self._config
        if self._accessor is None:
            self._accessor = RemoteClientAccessor(lambda: RemoteClient(config, logger=self._logger), logger=self._logger)
        if self._storage is None:
            self._storage = self._build_storage()
        if self._hub is None:
            self._hub = self._build_hub()
            await self._start_mqtt()

        local = LocalFallbackStore(self._storage, prefix=config.local_prefix, logger=self._logger)
        broadcaster = CrossClientBroadcaster(
            local,
            self._hub,
            channel_prefix=config.local_prefix.rstrip(":") or config.state_table,
            logger=self._logger,
        )
        self._store = KeyedStateStore(
            self._accessor,
            local,
            broadcaster,
            table=config.state_table,
            logger=self._logger,
        )
        self._engine = PaginationEngine(
            self._accessor,
            table=config.records_table,
            search_column=config.records_search_column,
            dataset=self._dataset,
            default_limit=config.default_page_size,
            logger=self._logger,
        )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self._stop_mqtt()
        if self._accessor is not None and not self._external_accessor:
            await self._accessor.aclose()
            self._accessor = None
        self._store = None
        self._engine = None

    def _build_storage(self) -> StorageArea:
        config = self._config
        if config.local_dir:
            return FileStorageArea(
                config.local_dir,
                watch_interval=config.local_watch_interval,
                logger=self._logger,
            )
        return MemoryStorageArea(quota_bytes=config.local_quota_bytes, logger=self._logger)

    def _build_hub(self) -> BroadcastHub:
        config = self._config
        if config.broadcast_backend != "mqtt":
            return InProcessBroadcastHub(logger=self._logger)

        loop = asyncio.get_running_loop()

        def runtime_factory(on_event: Callable[[MqttEvent], None], topic_filter: str) -> MqttRuntime:
            return MqttRuntime(
                loop=loop,
                host=config.mqtt_host,
                port=config.mqtt_port,
                topic_filter=topic_filter,
                on_event=on_event,
                keepalive=config.mqtt_keepalive,
                logger=self._logger,
            )

        self._mqtt_hub = MqttBroadcastHub(
            topic_prefix=config.mqtt_topic_prefix,
            runtime_factory=runtime_factory,
            logger=self._logger,
        )
        return self._mqtt_hub

    async def _start_mqtt(self) -> None:
        """Best-effort MQTT startup (failures leave broadcast in-process)."""
        hub = self._mqtt_hub
        if hub is None:
            return
        try:
            await asyncio.get_running_loop().run_in_executor(None, hub.start)
        except Exception:
            self._logger.warning("MQTT startup failed; cross-process broadcast disabled", exc_info=True)

    def _stop_mqtt(self) -> None:
        hub = self._mqtt_hub
        self._mqtt_hub = None
        if hub is not None:
            try:
                hub.stop()
            except Exception:
                self._logger.debug("MQTT shutdown failed", exc_info=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_store(self) -> KeyedStateStore:
        if self._store is None:
            raise GridStateError("Client not initialized. Use 'async with GridStateClient(...) as client:'")
        return self._store

    def _require_engine(self) -> PaginationEngine:
        if self._engine is None:
            raise GridStateError("Client not initialized. Use 'async with GridStateClient(...) as client:'")
        return self._engine

    @property
    def config(self) -> GridStateConfig:
        return self._config

    @property
    def store(self) -> KeyedStateStore:
        return self._require_store()

    @property
    def system(self) -> SystemStateRepository:
        return SystemStateRepository(self._require_store())

    @property
    def updates(self) -> UpdatesStateRepository:
        return UpdatesStateRepository(self._require_store(), logger=self._logger)

    # ------------------------------------------------------------------
    # Keyed state
    # ------------------------------------------------------------------

    async def load_state(self, key: str) -> Any | None:
        """Return the payload stored under *key*, or ``None``."""
        return await self._require_store().load(key)

    async def save_state(self, key: str, payload: Any) -> None:
        """Persist *payload* under *key* remotely, or locally on failure."""
        await self._require_store().save(key, payload)

    async def subscribe_to_state(self, key: str, handler: Callable[[Any], None]) -> Unsubscribe:
        """Follow changes of *key*; returns an idempotent ``unsubscribe``."""
        return await self._require_store().subscribe(key, handler)

    # ------------------------------------------------------------------
    # Records listing
    # ------------------------------------------------------------------

    async def list_records(self, query: ListQuery | None = None, **filters: Any) -> ListResult:
        """Return one page of records.

        Pass either a ``ListQuery`` or its fields as keyword arguments
        (``limit``, ``cursor``, ``category``, ``search``, ``start_date``,
        ``end_date``).
        """
        if query is not None and filters:
            raise TypeError("Pass either a ListQuery or keyword filters, not both")
        if query is None:
            query = ListQuery(**filters)
        return await self._require_engine().list_records(query)

    async def list_records_since(self, timestamp: str) -> list[ListedRecord]:
        return await self._require_engine().list_records_since(timestamp)
