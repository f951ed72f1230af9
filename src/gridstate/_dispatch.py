"""Deferred, exception-safe callback delivery for notification paths."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any


def _safe_call(callback: Callable[..., Any], args: tuple[Any, ...], logger: logging.Logger) -> None:
    try:
        callback(*args)
    except Exception:
        logger.warning("Listener %r failed", callback, exc_info=True)


def dispatch(callback: Callable[..., Any], *args: Any, logger: logging.Logger) -> None:
    """Run *callback* on the next loop iteration, or now when no loop runs.

    Listener exceptions are logged and never reach the notifying medium.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        _safe_call(callback, args, logger)
        return
    loop.call_soon(_safe_call, callback, args, logger)
