"""Typed repositories over individual state keys."""

from gridstate.repositories.system import SYSTEM_STATE_KEY, SystemStateRepository
from gridstate.repositories.updates import UPDATES_CACHE_KEY, UpdatesStateRepository

__all__ = [
    "SYSTEM_STATE_KEY",
    "UPDATES_CACHE_KEY",
    "SystemStateRepository",
    "UpdatesStateRepository",
]
