"""Keyset cursor codec.

A cursor is the compact JSON text ``{"timestamp": ..., "id": ...}`` of the
last row of a page. It is opaque to callers and must decode to exactly one
position in the ``(timestamp desc, id desc)`` order.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from gridstate.models._base import parse_iso_timestamp
from gridstate.models.records import CursorPayload, ListedRecord


def encode_cursor(record: ListedRecord | None) -> str | None:
    """Serialize the position of *record*; ``None`` when there is no record."""
    if record is None:
        return None
    return json.dumps({"timestamp": record.timestamp, "id": record.id}, separators=(",", ":"))


def decode_cursor(text: str | None) -> CursorPayload | None:
    """Parse cursor text. Missing or malformed cursors decode to ``None``.

    Temporal plausibility (e.g. a timestamp in the future) is not checked.
    """
    if not text:
        return None
    try:
        return CursorPayload.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError, TypeError):
        return None


def is_valid_cursor(text: str | None) -> bool:
    """``True`` for an absent cursor or one that decodes cleanly."""
    if not text:
        return True
    return decode_cursor(text) is not None


def is_after_cursor(record: ListedRecord, cursor: CursorPayload) -> bool:
    """Whether *record* sorts strictly after *cursor* in descending order.

    ``timestamp < cursor.timestamp OR (timestamp == cursor.timestamp AND
    id < cursor.id)``. Timestamps are compared as instants; a cursor whose
    timestamp is not ISO-8601 falls back to comparing the raw strings.
    """
    try:
        cursor_moment = parse_iso_timestamp(cursor.timestamp)
    except ValueError:
        if record.timestamp != cursor.timestamp:
            return record.timestamp < cursor.timestamp
        return record.id < cursor.id

    moment = record.moment
    if moment != cursor_moment:
        return moment < cursor_moment
    return record.id < cursor.id
