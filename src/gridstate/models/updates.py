"""Persisted view state of the updates panel (cached listing + filters)."""

from __future__ import annotations

from typing import Any

from pydantic import Field, ValidationError

from gridstate.models._base import GridBaseModel
from gridstate.models.records import ALL_CATEGORIES, ListedRecord, ListQuery


class UpdatesFilters(GridBaseModel):
    category: str = ALL_CATEGORIES
    search: str = ""
    start_date: str | None = None
    end_date: str | None = None

    def to_query(self, *, limit: int | None = None, cursor: str | None = None) -> ListQuery:
        return ListQuery(
            limit=limit,
            cursor=cursor,
            category=self.category,
            search=self.search,
            start_date=self.start_date,
            end_date=self.end_date,
        )


class PersistedUpdatesState(GridBaseModel):
    entries: list[ListedRecord] = Field(default_factory=list)
    next_cursor: str | None = None
    filters: UpdatesFilters = Field(default_factory=UpdatesFilters)
    last_viewed: str | None = None

    @classmethod
    def sanitize(cls, payload: Any) -> PersistedUpdatesState | None:
        """Rebuild persisted state, dropping whatever no longer validates.

        Invalid entries are skipped individually; unusable filters reset to
        the defaults. Cursor validity is checked by the repository.
        """
        if not isinstance(payload, dict):
            return None

        entries: list[ListedRecord] = []
        raw_entries = payload.get("entries")
        if isinstance(raw_entries, list):
            for raw in raw_entries:
                try:
                    entries.append(ListedRecord.model_validate(raw))
                except ValidationError:
                    continue

        try:
            filters = UpdatesFilters.model_validate(payload.get("filters") or {})
        except ValidationError:
            filters = UpdatesFilters()

        next_cursor = payload.get("nextCursor", payload.get("next_cursor"))
        last_viewed = payload.get("lastViewed", payload.get("last_viewed"))
        return cls(
            entries=entries,
            next_cursor=next_cursor if isinstance(next_cursor, str) else None,
            filters=filters,
            last_viewed=last_viewed if isinstance(last_viewed, str) else None,
        )
