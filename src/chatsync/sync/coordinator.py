from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from chatsync.conversation.models import utc_now
from chatsync.store.base import MessageStore
from chatsync.store.errors import StoreError

from .state import SyncClock, SyncGuard

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL = 300.0


@dataclass(frozen=True, slots=True)
class ConflictReport:
    conflicts: int = 0
    propagated: int = 0
    failures: int = 0


class SyncCoordinator:
    """Keeps the secondary store consistent with the primary store.

    The primary store is the source of truth. ``sync_all`` and
    ``incremental_sync`` share one single-flight guard: a call made while
    another sync is running returns ``False`` immediately.
    """

    def __init__(
        self,
        primary: MessageStore,
        secondary: MessageStore,
        clock: SyncClock,
        guard: Optional[SyncGuard] = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._clock = clock
        self._guard = guard or SyncGuard()
        self._task: Optional[asyncio.Task] = None
        self._stop: Optional[asyncio.Event] = None

    @property
    def is_syncing(self) -> bool:
        return self._guard.is_running

    def last_sync_at(self) -> Optional[datetime]:
        return self._clock.last_sync_at()

    def needs_sync(self, max_age: timedelta = timedelta(seconds=DEFAULT_SYNC_INTERVAL)) -> bool:
        last = self._clock.last_sync_at()
        return last is None or last < utc_now() - max_age

    async def sync_all(self, user_id: str) -> bool:
        if not self._guard.try_begin():
            logger.info("Sync already in progress; skipping full sync")
            return False
        try:
            await self._full_sync(user_id)
        finally:
            self._guard.end()
        return True

    async def incremental_sync(self, user_id: str) -> bool:
        if not self._guard.try_begin():
            logger.debug("Sync already in progress; skipping incremental sync")
            return False
        try:
            last_sync = self._clock.last_sync_at()
            if last_sync is None:
                await self._full_sync(user_id)
                return True

            started_at = utc_now()
            messages = await self._primary.load_messages(user_id, since=last_sync)
            if messages:
                await self._secondary.save_messages(messages, user_id)
            await self._clock.mark(started_at)
            logger.info("Incremental sync completed: %d messages since %s", len(messages), last_sync.isoformat())
        finally:
            self._guard.end()
        return True

    async def resolve_conflicts(self, user_id: str) -> ConflictReport:
        """Reconcile both stores, letting the primary copy win.

        Messages present only in the secondary store are pushed up to the
        primary store. Load failures propagate; individual write failures are
        logged and counted.
        """
        primary_messages = await self._primary.load_messages(user_id)
        secondary_messages = await self._secondary.load_messages(user_id)

        primary_map = {message.id: message for message in primary_messages}
        secondary_map = {message.id: message for message in secondary_messages}

        conflicts = [
            primary_map[message_id]
            for message_id in primary_map.keys() & secondary_map.keys()
            if primary_map[message_id].differs_from(secondary_map[message_id])
        ]
        secondary_only = [secondary_map[message_id] for message_id in secondary_map.keys() - primary_map.keys()]
        secondary_only.sort(key=lambda message: message.timestamp)

        failures = 0
        for message in conflicts:
            logger.info("Resolving conflict for message %s: primary version wins", message.id)
            try:
                await self._secondary.save_message(message, user_id)
            except StoreError as exc:
                failures += 1
                logger.warning("Could not overwrite cached message %s: %s", message.id, exc)

        propagated = 0
        for message in secondary_only:
            logger.info("Pushing cache-only message %s to primary store", message.id)
            try:
                await self._primary.save_message(message, user_id)
                propagated += 1
            except StoreError as exc:
                failures += 1
                logger.warning("Could not push message %s to primary store: %s", message.id, exc)

        report = ConflictReport(conflicts=len(conflicts), propagated=propagated, failures=failures)
        logger.info(
            "Conflict resolution completed: %d conflicts, %d propagated, %d failures",
            report.conflicts,
            report.propagated,
            report.failures,
        )
        return report

    def start_background_sync(self, user_id: str, interval: float = DEFAULT_SYNC_INTERVAL) -> None:
        if self._task is not None and not self._task.done():
            logger.debug("Background sync already running")
            return
        self._stop = asyncio.Event()
        self._task = asyncio.create_task(
            self._background_loop(user_id, interval, self._stop),
            name=f"background-sync-{user_id}",
        )
        logger.info("Background sync started for %s every %.0fs", user_id, interval)

    async def stop_background_sync(self) -> None:
        """Stop the timer; a tick already in flight is allowed to finish."""
        task, stop = self._task, self._stop
        self._task = None
        self._stop = None
        if task is None or stop is None:
            return
        stop.set()
        await task
        logger.info("Background sync stopped")

    @property
    def background_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _background_loop(self, user_id: str, interval: float, stop: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.incremental_sync(user_id)
            except Exception as exc:  # noqa: BLE001 - a failed tick must not end the loop
                logger.warning("Background sync failed: %s", exc)

    async def _full_sync(self, user_id: str) -> None:
        started_at = utc_now()
        logger.info("Starting full sync from primary to cache")
        messages = await self._primary.load_messages(user_id)
        await self._secondary.save_messages(messages, user_id)
        await self._clock.mark(started_at)
        logger.info("Sync completed: %d messages synced", len(messages))
