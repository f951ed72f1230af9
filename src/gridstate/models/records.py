"""Listed records (the updates changelog) and their query/result types."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import Field, StrictStr, field_validator

from gridstate.models._base import GridBaseModel, parse_iso_timestamp

ALL_CATEGORIES = "All"


class UpdateCategory(StrEnum):
    FEATURE = "Feature"
    FIX = "Fix"
    IMPROVEMENT = "Improvement"
    UI = "UI"
    SYSTEM = "System"
    NOTE = "Note"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_(cls, value: object) -> UpdateCategory:
        return cls.UNKNOWN


class ListedRecord(GridBaseModel):
    """A read-only changelog entry ordered by ``(timestamp desc, id desc)``."""

    id: str
    timestamp: str
    title: str = ""
    description: str = ""
    category: UpdateCategory = UpdateCategory.UNKNOWN
    version: str | None = None
    author: str | None = None

    @field_validator("id")
    @classmethod
    def _require_id(cls, value: str) -> str:
        if not value:
            raise ValueError("id must be non-empty")
        return value

    @field_validator("timestamp")
    @classmethod
    def _require_iso_timestamp(cls, value: str) -> str:
        parse_iso_timestamp(value)
        return value

    @property
    def moment(self) -> datetime:
        return parse_iso_timestamp(self.timestamp)

    @property
    def position(self) -> tuple[datetime, str]:
        """Sort key of the natural order (compare descending)."""
        return (self.moment, self.id)


class CursorPayload(GridBaseModel):
    """Decoded keyset cursor: the position of the last row of a page."""

    timestamp: StrictStr = Field(min_length=1)
    id: StrictStr = Field(min_length=1)


class ListQuery(GridBaseModel):
    """Listing request. All filters are conjunctive.

    ``category="All"`` and an empty ``search`` mean "no filter". Date bounds
    are inclusive and compared against ``timestamp``.
    """

    limit: int | None = Field(default=None, gt=0)
    cursor: str | None = None
    category: str | None = None
    search: str | None = None
    start_date: str | None = None
    end_date: str | None = None

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        if not stripped or stripped == ALL_CATEGORIES:
            return None
        return stripped

    @field_validator("search")
    @classmethod
    def _normalize_search(cls, value: str | None) -> str | None:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None

    @field_validator("start_date", "end_date")
    @classmethod
    def _validate_bound(cls, value: str | None) -> str | None:
        if not value:
            return None
        parse_iso_timestamp(value)
        return value

    @field_validator("cursor")
    @classmethod
    def _normalize_cursor(cls, value: str | None) -> str | None:
        return value or None


class ListResult(GridBaseModel):
    entries: list[ListedRecord] = Field(default_factory=list)
    next_cursor: str | None = None
