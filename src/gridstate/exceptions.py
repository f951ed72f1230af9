"""Custom exception hierarchy for gridstate."""

from __future__ import annotations


class GridStateError(Exception):
    """Base exception for all gridstate errors."""


class GridStateConfigError(GridStateError):
    """Invalid or missing configuration."""


class RemoteTransportError(GridStateError):
    """HTTP-level failure (network, non-2xx without error body, invalid JSON)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RemoteApiError(GridStateError):
    """Remote store rejected the request with a structured error body."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
        status_code: int | None = None,
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        self.status_code = status_code
        super().__init__(message)


class RealtimeError(GridStateError):
    """Realtime channel failed to join or was closed by the server."""

    def __init__(self, message: str, *, topic: str = "") -> None:
        self.topic = topic
        super().__init__(message)


class QuotaExceededError(GridStateError):
    """Local storage medium refused a write because it is full."""
