"""State store entries and change notifications."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from gridstate.models._base import GridBaseModel


class StateEntry(GridBaseModel):
    """One persisted row of the keyed state table."""

    key: str
    payload: Any = None
    updated_at: str | None = None

    @field_validator("key")
    @classmethod
    def _require_key(cls, value: str) -> str:
        if not value:
            raise ValueError("key must be non-empty")
        return value


class BroadcastMessage(GridBaseModel):
    """Ephemeral cross-client notification of a local write (or deletion)."""

    key: str
    payload: Any = None


class ChangeEvent(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class RowChange(GridBaseModel):
    """A normalized row change delivered by the remote change feed."""

    event: ChangeEvent
    table: str = ""
    record: dict[str, Any] | None = None
    old_record: dict[str, Any] | None = Field(default=None)

    @property
    def payload(self) -> Any:
        """New payload carried by the change; ``None`` for deletions."""
        if self.event is ChangeEvent.DELETE or self.record is None:
            return None
        return self.record.get("payload")
