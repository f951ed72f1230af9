"""gridstate - Keyed state replication and keyset-paginated listings with local fallback."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("gridstate")
except PackageNotFoundError:
    __version__ = "0+local"
from gridstate.accessor import RemoteClientAccessor
from gridstate.client import GridStateClient
from gridstate.config import GridStateConfig
from gridstate.exceptions import (
    GridStateConfigError,
    GridStateError,
    QuotaExceededError,
    RealtimeError,
    RemoteApiError,
    RemoteTransportError,
)
from gridstate.models import (
    BroadcastMessage,
    CursorPayload,
    ListedRecord,
    ListQuery,
    ListResult,
    PersistedUpdatesState,
    StateEntry,
    SystemState,
    UpdateCategory,
    UpdatesFilters,
)
from gridstate.remote import RemoteClient, RemoteHandle

__all__ = [
    "__version__",
    "BroadcastMessage",
    "CursorPayload",
    "GridStateClient",
    "GridStateConfig",
    "GridStateConfigError",
    "GridStateError",
    "ListQuery",
    "ListResult",
    "ListedRecord",
    "PersistedUpdatesState",
    "QuotaExceededError",
    "RealtimeError",
    "RemoteApiError",
    "RemoteClient",
    "RemoteClientAccessor",
    "RemoteHandle",
    "RemoteTransportError",
    "StateEntry",
    "SystemState",
    "UpdateCategory",
    "UpdatesFilters",
]
