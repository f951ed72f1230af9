"""Persisted orchestration on/off switch."""

from __future__ import annotations

from typing import Any

from pydantic import StrictBool, ValidationError

from gridstate.models._base import GridBaseModel, utc_now_iso


class SystemState(GridBaseModel):
    active: StrictBool
    updated_at: str

    @classmethod
    def sanitize(cls, payload: Any) -> SystemState | None:
        """Coerce a loaded payload into a ``SystemState`` or ``None``.

        A payload without a boolean ``active`` flag is unusable. A missing or
        non-string ``updatedAt`` is replaced with the current time.
        """
        if not isinstance(payload, dict):
            return None
        updated_at = payload.get("updatedAt", payload.get("updated_at"))
        if not isinstance(updated_at, str):
            updated_at = utc_now_iso()
        try:
            return cls(active=payload.get("active"), updated_at=updated_at)
        except ValidationError:
            return None
