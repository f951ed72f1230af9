"""Local fallback persistence.

`StorageArea` models a synchronous string key-value medium shared by every
client on the same device; writes by one client raise `StorageEvent`s in the
others. `LocalFallbackStore` namespaces JSON payloads inside such an area and
heals corrupt entries instead of failing.
"""

from __future__ import annotations

import asyncio
import contextlib
import errno
import json
import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote, unquote

from gridstate._dispatch import dispatch
from gridstate.exceptions import QuotaExceededError

_logger = logging.getLogger(__name__)

DEFAULT_PREFIX = "app_state:"


@dataclass(frozen=True)
class StorageEvent:
    """A change to one storage key made by another client."""

    key: str
    old_value: str | None
    new_value: str | None


StorageListener = Callable[[StorageEvent], None]


class StorageArea(Protocol):
    def get_item(self, key: str) -> str | None:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        ...


class _ListenerSet:
    def __init__(self, logger: logging.Logger) -> None:
        self._listeners: list[StorageListener] = []
        self._logger = logger

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: StorageListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return remove

    def emit(self, event: StorageEvent) -> None:
        for listener in list(self._listeners):
            dispatch(listener, event, logger=self._logger)


def _encoded_len(text: str) -> int:
    return len(text.encode("utf-8"))


class MemoryStorageMedium:
    """Backing dict shared by several `MemoryStorageArea` clients."""

    def __init__(self, *, quota_bytes: int | None = None) -> None:
        self.quota_bytes = quota_bytes
        self._data: dict[str, str] = {}
        self._areas: list[MemoryStorageArea] = []

    def _attach(self, area: MemoryStorageArea) -> None:
        self._areas.append(area)

    def _size_with(self, key: str, value: str | None) -> int:
        total = 0
        for existing_key, existing_value in self._data.items():
            if existing_key != key:
                total += _encoded_len(existing_key) + _encoded_len(existing_value)
        if value is not None:
            total += _encoded_len(key) + _encoded_len(value)
        return total

    def _write(self, origin: MemoryStorageArea, key: str, value: str | None) -> None:
        old = self._data.get(key)
        if value is None:
            if old is None:
                return
            del self._data[key]
        else:
            if self.quota_bytes is not None and self._size_with(key, value) > self.quota_bytes:
                raise QuotaExceededError(f"Storage quota of {self.quota_bytes} bytes exceeded writing {key!r}")
            self._data[key] = value
        event = StorageEvent(key=key, old_value=old, new_value=value)
        for area in self._areas:
            if area is not origin:
                area._listeners.emit(event)  # noqa: SLF001


class MemoryStorageArea:
    """In-process storage area.

    Areas built on the same medium behave like browser tabs sharing
    ``localStorage``: a write in one fires events in the others only.
    """

    def __init__(
        self,
        medium: MemoryStorageMedium | None = None,
        *,
        quota_bytes: int | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.medium = medium if medium is not None else MemoryStorageMedium(quota_bytes=quota_bytes)
        self._listeners = _ListenerSet(logger or _logger)
        self.medium._attach(self)  # noqa: SLF001

    def get_item(self, key: str) -> str | None:
        return self.medium._data.get(key)  # noqa: SLF001

    def set_item(self, key: str, value: str) -> None:
        self.medium._write(self, key, value)  # noqa: SLF001

    def remove_item(self, key: str) -> None:
        self.medium._write(self, key, None)  # noqa: SLF001

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        return self._listeners.add(listener)


class FileStorageArea:
    """Directory-backed storage area, one file per key.

    Writes are atomic (temp file + replace). Changes written by other
    processes are picked up by `poll_changes`, which a background task runs
    every ``watch_interval`` seconds while listeners are registered.
    """

    def __init__(
        self,
        directory: str | os.PathLike[str],
        *,
        watch_interval: float = 1.0,
        logger: logging.Logger | None = None,
    ) -> None:
        self._dir = Path(directory).expanduser()
        self._watch_interval = watch_interval
        self._logger = logger or _logger
        self._listeners = _ListenerSet(self._logger)
        self._known: dict[str, str] = {}
        self._watcher: asyncio.Task[None] | None = None

    @property
    def directory(self) -> Path:
        return self._dir

    def _path(self, key: str) -> Path:
        return self._dir / quote(key, safe="")

    def _snapshot(self) -> dict[str, str]:
        snapshot: dict[str, str] = {}
        if not self._dir.is_dir():
            return snapshot
        for path in self._dir.iterdir():
            if path.name.startswith(".") or not path.is_file():
                continue
            try:
                snapshot[unquote(path.name)] = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                continue
            except UnicodeDecodeError:
                self._logger.debug("Skipping undecodable file %s", path.name)
                continue
        return snapshot

    def get_item(self, key: str) -> str | None:
        try:
            return self._path(key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_name(f".{path.name}.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp.unlink(missing_ok=True)
            if exc.errno in (errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)):
                raise QuotaExceededError(f"No space left writing {key!r}") from exc
            raise
        self._known[key] = value

    def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)
        self._known.pop(key, None)

    def add_listener(self, listener: StorageListener) -> Callable[[], None]:
        remove = self._listeners.add(listener)
        self._ensure_watcher()

        def remove_and_maybe_stop() -> None:
            remove()
            if not len(self._listeners):
                self._stop_watcher()

        return remove_and_maybe_stop

    def poll_changes(self) -> list[StorageEvent]:
        """Compare the directory with the last known state and emit events."""
        current = self._snapshot()
        events: list[StorageEvent] = []
        for key in set(current) | set(self._known):
            old = self._known.get(key)
            new = current.get(key)
            if old != new:
                events.append(StorageEvent(key=key, old_value=old, new_value=new))
        self._known = current
        for event in events:
            self._listeners.emit(event)
        return events

    def _ensure_watcher(self) -> None:
        if self._watcher is not None and not self._watcher.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._logger.debug("No running loop; directory watcher for %s not started", self._dir)
            return
        self._known = self._snapshot()
        self._watcher = loop.create_task(self._watch())

    def _stop_watcher(self) -> None:
        watcher, self._watcher = self._watcher, None
        if watcher is not None and not watcher.done():
            watcher.cancel()

    async def _watch(self) -> None:
        while True:
            await asyncio.sleep(self._watch_interval)
            try:
                self.poll_changes()
            except OSError:
                self._logger.warning("Polling %s for changes failed", self._dir, exc_info=True)


class LocalFallbackStore:
    """Namespaced JSON persistence on top of a `StorageArea`."""

    def __init__(
        self,
        area: StorageArea,
        *,
        prefix: str = DEFAULT_PREFIX,
        logger: logging.Logger | None = None,
    ) -> None:
        self._area = area
        self._prefix = prefix
        self._logger = logger or _logger

    @property
    def area(self) -> StorageArea:
        return self._area

    def storage_key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def read(self, key: str) -> Any | None:
        """Return the stored payload, or ``None`` if absent or unreadable.

        Corrupt entries are deleted so the next read starts clean.
        """
        storage_key = self.storage_key(key)
        try:
            raw = self._area.get_item(storage_key)
            if raw is None:
                return None
            return json.loads(raw)
        except OSError as exc:
            self._logger.warning("Unable to read local state for key %r: %s", key, exc)
            return None
        except ValueError:
            # Undecodable bytes or invalid JSON.
            self._logger.warning("Discarding corrupt local state for key %r", key)
            try:
                self._area.remove_item(storage_key)
            except OSError:
                self._logger.warning("Unable to remove corrupt local state for key %r", key, exc_info=True)
            return None

    def write(self, key: str, payload: Any) -> bool:
        """Persist *payload*; returns ``False`` when the medium rejected it."""
        try:
            raw = json.dumps(payload, separators=(",", ":"))
        except (TypeError, ValueError) as exc:
            self._logger.warning("Unable to serialize local state for key %r: %s", key, exc)
            return False
        try:
            self._area.set_item(self.storage_key(key), raw)
        except (QuotaExceededError, OSError) as exc:
            self._logger.warning("Unable to persist local state for key %r: %s", key, exc)
            return False
        return True

    def remove(self, key: str) -> None:
        try:
            self._area.remove_item(self.storage_key(key))
        except OSError as exc:
            self._logger.warning("Unable to remove local state for key %r: %s", key, exc)

    def decode(self, raw: str | None) -> Any | None:
        """Decode a raw value seen in a storage event; corrupt text yields ``None``."""
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            self._logger.debug("Ignoring undecodable storage event value")
            return None
