"""Client configuration for gridstate."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Mapping
from typing import Any, Literal

BroadcastBackend = Literal["memory", "mqtt"]


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _first_env(env: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


@dataclasses.dataclass(frozen=True)
class GridStateConfig:
    """Client configuration.

    Parameters
    ----------
    remote_url : str or None
        Base URL of the remote store (e.g. ``https://xyz.supabase.co``).
        When missing, every remote access falls back to local storage.
    remote_key : str or None
        API key sent as ``apikey`` and bearer token.
    schema : str
        Database schema exposed by the REST layer.
    state_table : str
        Table holding one ``{key, payload}`` row per state key.
    records_table : str
        Table holding listed records (the updates changelog).
    records_search_column : str
        Full-text search column used for ``search`` filters.
    request_timeout : float
        Total timeout in seconds for a single REST request.
    realtime_join_timeout : float
        Seconds to wait for a realtime channel join reply.
    realtime_heartbeat : float
        Seconds between realtime protocol heartbeats.
    local_dir : str or None
        Directory backing the local fallback store. ``None`` keeps the
        fallback store in memory for the lifetime of the process.
    local_prefix : str
        Namespace prepended to every key in the local medium.
    local_watch_interval : float
        Polling interval of the directory watcher that reports changes
        written by other processes.
    local_quota_bytes : int or None
        Optional byte quota for the in-memory medium.
    broadcast_backend : {"memory", "mqtt"}
        Cross-client channel implementation.
    mqtt_host : str
        Broker host for the ``mqtt`` broadcast backend.
    mqtt_port : int
        Broker port.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_topic_prefix : str
        Topic prefix under which channels are published.
    default_page_size : int or None
        Page size used by listings when the query sets no limit.
    """

    remote_url: str | None = None
    remote_key: str | None = None
    schema: str = "public"
    state_table: str = "app_state"
    records_table: str = "app_updates"
    records_search_column: str = "fts"
    request_timeout: float = 10.0
    realtime_join_timeout: float = 10.0
    realtime_heartbeat: float = 25.0
    local_dir: str | None = None
    local_prefix: str = "app_state:"
    local_watch_interval: float = 1.0
    local_quota_bytes: int | None = None
    broadcast_backend: BroadcastBackend = "memory"
    mqtt_host: str = "localhost"
    mqtt_port: int = 1883
    mqtt_keepalive: int = 60
    mqtt_topic_prefix: str = "gridstate"
    default_page_size: int | None = None

    @property
    def remote_configured(self) -> bool:
        """Whether both connection parameters for the remote store are set."""
        return bool(self.remote_url and self.remote_key)

    @classmethod
    def from_env(cls, **overrides: Any) -> GridStateConfig:
        """Create configuration from environment variables.

        Reads ``GRIDSTATE_*`` variables. The remote URL and key also fall back
        to ``SUPABASE_URL`` and ``SUPABASE_ANON_KEY``. Explicit keyword
        arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        remote_url = _first_env(env, "GRIDSTATE_REMOTE_URL", "SUPABASE_URL")
        if remote_url is not None:
            config_kwargs["remote_url"] = remote_url.rstrip("/")
        remote_key = _first_env(env, "GRIDSTATE_REMOTE_KEY", "SUPABASE_ANON_KEY")
        if remote_key is not None:
            config_kwargs["remote_key"] = remote_key

        _ENV_STR_MAP = {
            "GRIDSTATE_SCHEMA": "schema",
            "GRIDSTATE_STATE_TABLE": "state_table",
            "GRIDSTATE_RECORDS_TABLE": "records_table",
            "GRIDSTATE_RECORDS_SEARCH_COLUMN": "records_search_column",
            "GRIDSTATE_LOCAL_DIR": "local_dir",
            "GRIDSTATE_LOCAL_PREFIX": "local_prefix",
            "GRIDSTATE_BROADCAST_BACKEND": "broadcast_backend",
            "GRIDSTATE_MQTT_HOST": "mqtt_host",
            "GRIDSTATE_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "GRIDSTATE_REQUEST_TIMEOUT": "request_timeout",
            "GRIDSTATE_REALTIME_JOIN_TIMEOUT": "realtime_join_timeout",
            "GRIDSTATE_REALTIME_HEARTBEAT": "realtime_heartbeat",
            "GRIDSTATE_LOCAL_WATCH_INTERVAL": "local_watch_interval",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = float(val)

        _ENV_INT_MAP = {
            "GRIDSTATE_LOCAL_QUOTA_BYTES": "local_quota_bytes",
            "GRIDSTATE_MQTT_PORT": "mqtt_port",
            "GRIDSTATE_MQTT_KEEPALIVE": "mqtt_keepalive",
            "GRIDSTATE_DEFAULT_PAGE_SIZE": "default_page_size",
        }
        for env_key, field_name in _ENV_INT_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = int(val)

        # GRIDSTATE_MQTT_ENABLED selects mqtt when no backend is named.
        if "broadcast_backend" not in config_kwargs and "broadcast_backend" not in overrides:
            if _env_bool(env.get("GRIDSTATE_MQTT_ENABLED"), False):
                config_kwargs["broadcast_backend"] = "mqtt"

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
