"""Catalog store with a change feed.

The catalog holds one record per uploaded object, keyed by object key.
Writes are idempotent: repeating a write that leaves the stored state
unchanged is a successful no-op and emits nothing on the change feed.

Supported backends:
- "memory": dict-backed store (tests and single-process runs)
- "json": one JSON file per key on the local filesystem (development)

Storage structure for the JSON backend:
    storage_path/<url-quoted key>.json -> {"key": "...", "fields": {...}}

Change feed:
    Listeners registered with subscribe() receive a ChangeRecord after the
    write is committed and the store lock is released. They run as tracked
    background tasks, so the writer returns without waiting for them; call
    wait_for_listeners() to let them finish. A failing listener is logged and
    never turns a committed write into an error.

Usage:
    store = create_catalog_store(settings.store)
    store.subscribe(confirmation_notifier.handle)
    await store.put("photo.png", {"image_name": "photo.png"})
"""

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from pathlib import Path
from typing import Protocol
from urllib.parse import quote, unquote

from config.config import StoreSettings
from core.errors.exceptions import RecordNotFoundError, StoreError
from core.logging.utilities import log_exception
from upload_pipeline.common.types import ChangeRecord, ChangeType

logger = logging.getLogger(__name__)

ChangeListener = Callable[[ChangeRecord], Awaitable[None]]


# =============================================================================
# Protocol definition
# =============================================================================


class CatalogStore(Protocol):
    """Protocol for catalog storage backends.

    Write methods return True when the stored state changed. Failures raise
    StoreError subclasses.
    """

    async def put(self, key: str, fields: Mapping[str, str]) -> bool:
        """Create the record or merge ``fields`` into the existing one."""
        ...

    async def update(self, key: str, field: str, value: str) -> bool:
        """Set one field on an existing record.

        Raises:
            RecordNotFoundError: If no record exists for key
        """
        ...

    async def delete(self, key: str) -> bool:
        """Remove the record. Deleting an absent key is a no-op."""
        ...

    async def get(self, key: str) -> dict[str, str] | None:
        ...

    async def keys(self) -> list[str]:
        ...

    def subscribe(self, listener: ChangeListener) -> None:
        ...

    async def wait_for_listeners(self, timeout_seconds: float | None = None) -> None:
        ...

    async def close(self) -> None:
        ...


# =============================================================================
# Shared change-feed plumbing
# =============================================================================


class _ChangeFeedStore:
    """Write-merging and change-feed behavior shared by the backends."""

    backend = "base"

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []
        self._pending_tasks: set[asyncio.Task] = set()
        self._task_counter = 0

    def subscribe(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    @property
    def pending_notifications(self) -> int:
        return len(self._pending_tasks)

    async def _emit(self, change: ChangeRecord | None) -> None:
        # Listeners run as background tasks so a slow listener never holds up the writer
        if change is None or not self._listeners:
            return
        self._task_counter += 1
        task = asyncio.create_task(
            self._notify_listeners(change),
            name=f"change-feed-{self.backend}-{self._task_counter}",
        )
        self._pending_tasks.add(task)

        def _on_task_done(t: asyncio.Task) -> None:
            self._pending_tasks.discard(t)
            if t.cancelled():
                logger.debug("Change feed task cancelled", extra={"task_name": t.get_name()})
            elif t.exception() is not None:
                log_exception(
                    logger,
                    t.exception(),
                    "Change feed task failed",
                    task_name=t.get_name(),
                    key=change.key,
                )

        task.add_done_callback(_on_task_done)

    async def _notify_listeners(self, change: ChangeRecord) -> None:
        for listener in list(self._listeners):
            try:
                await listener(change)
            except Exception as e:
                log_exception(
                    logger,
                    e,
                    "Change feed listener failed",
                    key=change.key,
                    change_type=change.change_type.value,
                    backend=self.backend,
                )

    async def wait_for_listeners(self, timeout_seconds: float | None = None) -> None:
        """Wait until every change emitted so far has reached its listeners.

        Tasks still running after ``timeout_seconds`` are cancelled.
        """
        while self._pending_tasks:
            tasks = list(self._pending_tasks)
            _, pending = await asyncio.wait(tasks, timeout=timeout_seconds)
            if pending:
                logger.warning(
                    "Cancelling change feed tasks that did not complete in time",
                    extra={"pending_count": len(pending), "timeout_seconds": timeout_seconds},
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
                return

    @staticmethod
    def _merge_put(
        key: str, existing: dict[str, str] | None, fields: Mapping[str, str]
    ) -> tuple[dict[str, str], ChangeRecord | None]:
        if existing is None:
            record = dict(fields)
            return record, ChangeRecord(ChangeType.INSERT, key, dict(record))
        merged = {**existing, **fields}
        if merged == existing:
            return existing, None
        return merged, ChangeRecord(ChangeType.MODIFY, key, dict(merged))

    @staticmethod
    def _merge_update(
        key: str, existing: dict[str, str] | None, field: str, value: str
    ) -> tuple[dict[str, str], ChangeRecord | None]:
        if existing is None:
            raise RecordNotFoundError(key)
        if existing.get(field) == value:
            return existing, None
        merged = {**existing, field: value}
        return merged, ChangeRecord(ChangeType.MODIFY, key, dict(merged))


# =============================================================================
# In-memory backend
# =============================================================================


class InMemoryCatalogStore(_ChangeFeedStore):
    """Dict-backed catalog store. Writes are serialized by one store-wide lock."""

    backend = "memory"

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, dict[str, str]] = {}
        self._lock = asyncio.Lock()

    async def put(self, key: str, fields: Mapping[str, str]) -> bool:
        async with self._lock:
            record, change = self._merge_put(key, self._records.get(key), fields)
            self._records[key] = record
        await self._emit(change)
        return change is not None

    async def update(self, key: str, field: str, value: str) -> bool:
        async with self._lock:
            record, change = self._merge_update(key, self._records.get(key), field, value)
            self._records[key] = record
        await self._emit(change)
        return change is not None

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existing = self._records.pop(key, None)
        change = ChangeRecord(ChangeType.REMOVE, key, existing) if existing is not None else None
        await self._emit(change)
        return change is not None

    async def get(self, key: str) -> dict[str, str] | None:
        record = self._records.get(key)
        return dict(record) if record is not None else None

    async def keys(self) -> list[str]:
        return sorted(self._records)

    async def close(self) -> None:
        await self.wait_for_listeners(timeout_seconds=30)


# =============================================================================
# JSON file backend
# =============================================================================


class JsonCatalogStore(_ChangeFeedStore):
    """Local filesystem JSON implementation of the catalog store.

    Each key lives in its own file and writes to the same key are serialized
    by a per-key lock. Files are written atomically (temp file, then rename).
    """

    backend = "json"

    def __init__(self, storage_path: str | Path):
        super().__init__()
        self.storage_path = Path(storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self._key_locks: dict[str, asyncio.Lock] = {}
        logger.info("Initialized JSON catalog store", extra={"path": str(self.storage_path)})

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        return lock

    def _path_for(self, key: str) -> Path:
        return self.storage_path / f"{quote(key, safe='')}.json"

    def _read(self, key: str) -> dict[str, str] | None:
        file_path = self._path_for(key)
        if not file_path.exists():
            return None
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read catalog record: {key}", cause=e, context={"key": key})
        return {str(k): str(v) for k, v in data.get("fields", {}).items()}

    def _write(self, key: str, fields: dict[str, str]) -> None:
        file_path = self._path_for(key)
        temp_file = file_path.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump({"key": key, "fields": fields}, f, indent=2, sort_keys=True)
            temp_file.replace(file_path)
        except OSError as e:
            raise StoreError(f"Failed to write catalog record: {key}", cause=e, context={"key": key})

    def _remove(self, key: str) -> None:
        try:
            self._path_for(key).unlink()
        except OSError as e:
            raise StoreError(f"Failed to delete catalog record: {key}", cause=e, context={"key": key})

    async def put(self, key: str, fields: Mapping[str, str]) -> bool:
        async with self._lock_for(key):
            existing = self._read(key)
            record, change = self._merge_put(key, existing, fields)
            if change is not None:
                self._write(key, record)
        await self._emit(change)
        return change is not None

    async def update(self, key: str, field: str, value: str) -> bool:
        async with self._lock_for(key):
            record, change = self._merge_update(key, self._read(key), field, value)
            if change is not None:
                self._write(key, record)
        await self._emit(change)
        return change is not None

    async def delete(self, key: str) -> bool:
        async with self._lock_for(key):
            existing = self._read(key)
            if existing is not None:
                self._remove(key)
        change = ChangeRecord(ChangeType.REMOVE, key, existing) if existing is not None else None
        await self._emit(change)
        return change is not None

    async def get(self, key: str) -> dict[str, str] | None:
        return self._read(key)

    async def keys(self) -> list[str]:
        return sorted(unquote(p.stem) for p in self.storage_path.glob("*.json"))

    async def close(self) -> None:
        """Let pending change notifications finish; there are no connections to close."""
        await self.wait_for_listeners(timeout_seconds=30)


# =============================================================================
# Factory
# =============================================================================


def create_catalog_store(settings: StoreSettings) -> CatalogStore:
    """Create the catalog store backend named in settings.

    Raises:
        ValueError: If the backend is unknown
    """
    if settings.backend == "memory":
        return InMemoryCatalogStore()
    if settings.backend == "json":
        return JsonCatalogStore(os.path.expanduser(settings.path))
    raise ValueError(
        f"Unknown catalog store backend: '{settings.backend}'. Must be 'memory' or 'json'."
    )