from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

_MIGRATION_KEY = "migration_completed"
_LAST_SYNC_KEY = "last_sync_timestamp"


class SyncStateStore:
    """Per-installation state persisted as a small JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._data: dict[str, Any] = self._read()
        self._write_lock = asyncio.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        await self._flush()

    async def remove(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            await self._flush()

    async def _flush(self) -> None:
        async with self._write_lock:
            payload = json.dumps(self._data, indent=2)
            await asyncio.to_thread(self._write, payload)

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Sync state file %s is unreadable, starting fresh: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class MigrationState(str, Enum):
    NOT_STARTED = "not_started"
    COMPLETED = "completed"


class MigrationLatch:
    """One-way NOT_STARTED -> COMPLETED transition, persisted."""

    def __init__(self, store: SyncStateStore) -> None:
        self._store = store

    @property
    def state(self) -> MigrationState:
        return MigrationState.COMPLETED if self._store.get(_MIGRATION_KEY, False) else MigrationState.NOT_STARTED

    def is_set(self) -> bool:
        return self.state is MigrationState.COMPLETED

    async def set(self) -> None:
        if not self.is_set():
            await self._store.set(_MIGRATION_KEY, True)

    async def reset(self) -> None:
        """Clear the latch. Only meant for support tooling and tests."""
        await self._store.remove(_MIGRATION_KEY)
        logger.info("Migration latch reset")


class SyncClock:
    """Persisted time of the last successful sync."""

    def __init__(self, store: SyncStateStore) -> None:
        self._store = store

    def last_sync_at(self) -> Optional[datetime]:
        value = self._store.get(_LAST_SYNC_KEY)
        if not isinstance(value, (int, float)) or value <= 0:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc)

    async def mark(self, when: datetime) -> None:
        await self._store.set(_LAST_SYNC_KEY, when.timestamp())


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class SyncGuard:
    """In-memory single-flight guard; a busy guard rejects rather than queues."""

    def __init__(self) -> None:
        self._state = SyncState.IDLE

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state is SyncState.RUNNING

    def try_begin(self) -> bool:
        if self._state is SyncState.RUNNING:
            return False
        self._state = SyncState.RUNNING
        return True

    def end(self) -> None:
        self._state = SyncState.IDLE
