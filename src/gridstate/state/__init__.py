"""State persistence and replication layer.

`KeyedStateStore` persists JSON payloads by key in the remote store, falls
back to `LocalFallbackStore` when the remote path fails, and replicates local
writes to other clients through `CrossClientBroadcaster`.
"""

from gridstate.state.broadcast import (
    CrossClientBroadcaster,
    InProcessBroadcastHub,
    MqttBroadcastHub,
    SnapshotGate,
)
from gridstate.state.local import FileStorageArea, LocalFallbackStore, MemoryStorageArea, MemoryStorageMedium
from gridstate.state.store import KeyedStateStore

__all__ = [
    "CrossClientBroadcaster",
    "FileStorageArea",
    "InProcessBroadcastHub",
    "KeyedStateStore",
    "LocalFallbackStore",
    "MemoryStorageArea",
    "MemoryStorageMedium",
    "MqttBroadcastHub",
    "SnapshotGate",
]
