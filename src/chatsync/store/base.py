from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Sequence

from chatsync.conversation.models import Conversation, Message, default_conversation_id, utc_now

from .errors import StoreError, Unavailable

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """Uniform contract over a concrete message backend, scoped per user."""

    name = "store"

    def __init__(self) -> None:
        self._conversation_locks: dict[str, asyncio.Lock] = {}

    async def get_or_create_default_conversation(self, user_id: str) -> str:
        """Return the user's default conversation id, creating it at most once."""
        lock = self._conversation_locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            existing = await self._find_default_conversation(user_id)
            if existing is not None:
                return existing
            conversation = Conversation(
                id=default_conversation_id(user_id),
                user_id=user_id,
                title="Default Conversation",
                created_at=utc_now(),
            )
            await self._create_conversation(conversation)
            logger.info("Created default conversation %s on %s", conversation.id, self.name)
            return conversation.id

    async def save_messages(
        self,
        messages: Sequence[Message],
        user_id: str,
        conversation_id: Optional[str] = None,
    ) -> int:
        """Save each message, failing only when none of them could be saved."""
        saved = 0
        last_error: Optional[StoreError] = None
        for message in messages:
            try:
                await self.save_message(message, user_id, conversation_id)
                saved += 1
            except StoreError as exc:
                last_error = exc
                logger.warning("Failed to save message %s to %s: %s", message.id, self.name, exc)
        if messages and saved == 0 and last_error is not None:
            raise Unavailable(f"No messages could be saved to {self.name}") from last_error
        return saved

    @abstractmethod
    async def _find_default_conversation(self, user_id: str) -> Optional[str]:
        ...

    @abstractmethod
    async def _create_conversation(self, conversation: Conversation) -> None:
        ...

    @abstractmethod
    async def save_message(self, message: Message, user_id: str, conversation_id: Optional[str] = None) -> None:
        ...

    @abstractmethod
    async def load_messages(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> list[Message]:
        """Messages ordered by timestamp ascending.

        ``limit`` keeps the most recent messages; ``since`` keeps only
        messages strictly newer than the given time.
        """

    @abstractmethod
    async def delete_message(self, message_id: str, user_id: str) -> None:
        ...

    async def init(self) -> None:
        return None

    async def close(self) -> None:
        return None
