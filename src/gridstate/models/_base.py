"""Base model shared by every gridstate payload model.

* ``alias_generator=to_camel`` so persisted camelCase keys (``nextCursor``,
  ``updatedAt``) map to snake_case fields.
* ``populate_by_name=True`` so Python callers can use field names.
* Frozen: payloads are values, replaced wholesale on every save.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def parse_iso_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC. Raises ``ValueError`` when the text is
    not ISO-8601.
    """
    parsed = datetime.fromisoformat(value.strip())
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def utc_now_iso() -> str:
    """Current time as an ISO-8601 string with millisecond precision."""
    return datetime.now(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GridBaseModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_payload(self) -> dict[str, Any]:
        """JSON-compatible dict using the persisted camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)
