from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from chatsync.conversation.models import Message
from chatsync.store.base import MessageStore
from chatsync.store.errors import StoreError
from chatsync.store.legacy import LegacyMessageSource, parse_legacy_payload

from .state import MigrationLatch

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MigrationResult:
    migrated: int
    completed: bool


class MigrationCoordinator:
    """Moves legacy device-only history into the primary store exactly once."""

    def __init__(
        self,
        primary: MessageStore,
        latch: MigrationLatch,
        legacy: Optional[LegacyMessageSource] = None,
        secondary: Optional[MessageStore] = None,
    ) -> None:
        self._primary = primary
        self._secondary = secondary
        self._legacy = legacy
        self._latch = latch
        self._lock = asyncio.Lock()

    def has_migrated(self) -> bool:
        return self._latch.is_set()

    async def migrate(self, user_id: str) -> MigrationResult:
        async with self._lock:
            if self._latch.is_set():
                logger.debug("Messages already migrated")
                return MigrationResult(migrated=0, completed=True)

            messages = await self._legacy.load() if self._legacy is not None else []
            if not messages:
                await self._latch.set()
                logger.info("No legacy messages found; migration marked complete")
                return MigrationResult(migrated=0, completed=True)

            try:
                migrated = await self._primary.save_messages(messages, user_id)
            except StoreError as exc:
                logger.warning("Migration of %d legacy messages failed, will retry: %s", len(messages), exc)
                return MigrationResult(migrated=0, completed=False)

            await self._copy_to_secondary(messages, user_id)
            await self._latch.set()
            logger.info("Migrated %d legacy messages to primary store", migrated)
            return MigrationResult(migrated=migrated, completed=True)

    async def migrate_payload(self, user_id: str, payload: Any) -> int:
        """Import a raw exported payload into the primary store, ignoring the latch.

        Raises:
            StoreError: if nothing could be written to the primary store.
        """
        messages = parse_legacy_payload(payload)
        if not messages:
            return 0
        migrated = await self._primary.save_messages(messages, user_id)
        logger.info("Imported %d messages from exported payload", migrated)
        return migrated

    async def _copy_to_secondary(self, messages: Sequence[Message], user_id: str) -> None:
        if self._secondary is None:
            return
        try:
            await self._secondary.save_messages(messages, user_id)
        except StoreError as exc:
            logger.warning("Error saving migrated messages to cache: %s", exc)
