import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from chatsync.conversation.models import Author, Conversation, Message, Project
from chatsync.store.base import MessageStore
from chatsync.store.errors import StoreError

BASE_TIME = datetime(2025, 11, 1, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryMessageStore(MessageStore):
    """Message store double that records calls and can be told to fail."""

    def __init__(self, name: str = "memory") -> None:
        super().__init__()
        self.name = name
        self.rows: dict[str, Message] = {}
        self.conversations: dict[str, Conversation] = {}
        self.fail_with: Optional[StoreError] = None
        self.load_calls = 0
        self.save_calls = 0
        self.batch_calls = 0
        self.delete_calls = 0

    async def _checkpoint(self) -> None:
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with

    async def _find_default_conversation(self, user_id):
        await self._checkpoint()
        for conversation in self.conversations.values():
            if conversation.user_id == user_id:
                return conversation.id
        return None

    async def _create_conversation(self, conversation):
        await self._checkpoint()
        self.conversations.setdefault(conversation.id, conversation)

    async def save_message(self, message, user_id, conversation_id=None):
        self.save_calls += 1
        await self._checkpoint()
        self.rows[message.id] = message

    async def save_messages(self, messages, user_id, conversation_id=None):
        self.batch_calls += 1
        await self._checkpoint()
        for message in messages:
            self.rows[message.id] = message
        return len(messages)

    async def load_messages(self, user_id, conversation_id=None, limit=None, since=None):
        self.load_calls += 1
        await self._checkpoint()
        messages = sorted(self.rows.values(), key=lambda message: message.timestamp)
        if since is not None:
            messages = [message for message in messages if message.timestamp > since]
        if limit is not None:
            messages = messages[-limit:] if limit else []
        return messages

    async def delete_message(self, message_id, user_id):
        self.delete_calls += 1
        await self._checkpoint()
        self.rows.pop(message_id, None)


def _make_message(
    message_id: str,
    content: str = "",
    *,
    author: Author = Author.USER,
    parent_id: Optional[str] = None,
    minutes: int = 0,
    projects: tuple[Project, ...] = (),
) -> Message:
    return Message(
        id=message_id,
        content=content or f"message {message_id}",
        author=author,
        timestamp=BASE_TIME + timedelta(minutes=minutes),
        parent_id=parent_id,
        annotations=projects,
    )


@pytest.fixture
def make_message():
    return _make_message


@pytest.fixture
def store_factory():
    return InMemoryMessageStore


@pytest.fixture
def primary():
    return InMemoryMessageStore("primary")


@pytest.fixture
def secondary():
    return InMemoryMessageStore("secondary")
