"""Data models for gridstate payloads."""

from gridstate.models._base import GridBaseModel, parse_iso_timestamp, utc_now_iso
from gridstate.models.records import (
    ALL_CATEGORIES,
    CursorPayload,
    ListedRecord,
    ListQuery,
    ListResult,
    UpdateCategory,
)
from gridstate.models.state import BroadcastMessage, ChangeEvent, RowChange, StateEntry
from gridstate.models.system import SystemState
from gridstate.models.updates import PersistedUpdatesState, UpdatesFilters

__all__ = [
    "ALL_CATEGORIES",
    "BroadcastMessage",
    "ChangeEvent",
    "CursorPayload",
    "GridBaseModel",
    "ListQuery",
    "ListResult",
    "ListedRecord",
    "PersistedUpdatesState",
    "RowChange",
    "StateEntry",
    "SystemState",
    "UpdateCategory",
    "UpdatesFilters",
    "parse_iso_timestamp",
    "utc_now_iso",
]
