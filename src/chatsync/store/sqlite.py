from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TypeVar

from chatsync.conversation.models import Conversation, Message, format_ts

from .base import MessageStore
from .errors import ConfigurationMissing, Unavailable, ValidationFailure
from .records import message_to_record, record_to_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CONVERSATIONS_DDL = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    title TEXT,
    is_default INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
"""

_MESSAGES_DDL = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    conversation_id TEXT,
    content TEXT NOT NULL,
    is_user INTEGER NOT NULL,
    timestamp TEXT NOT NULL,
    parent_id TEXT,
    project_cards TEXT
);
"""

_CREATE_INDEXES = [
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_conversations_default ON conversations(user_id) WHERE is_default = 1;",
    "CREATE INDEX IF NOT EXISTS idx_messages_user_ts ON messages(user_id, timestamp);",
    "CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id, timestamp);",
]

_UPSERT_MESSAGE = (
    "INSERT INTO messages (id, user_id, conversation_id, content, is_user, timestamp, parent_id, project_cards)"
    " VALUES (:id, :user_id, :conversation_id, :content, :is_user, :timestamp, :parent_id, :project_cards)"
    " ON CONFLICT(id) DO UPDATE SET"
    " content = excluded.content,"
    " is_user = excluded.is_user,"
    " timestamp = excluded.timestamp,"
    " parent_id = excluded.parent_id,"
    " project_cards = excluded.project_cards,"
    " conversation_id = COALESCE(excluded.conversation_id, messages.conversation_id)"
)


def _ensure_pragmas(connection: sqlite3.Connection) -> None:
    connection.execute("PRAGMA journal_mode = WAL;")


class SQLiteMessageStore(MessageStore):
    """Device-local message cache backed by SQLite."""

    name = "secondary"

    def __init__(self, db_path: str) -> None:
        super().__init__()
        self._db_path = ""
        if db_path:
            path = Path(db_path)
            if not path.is_absolute():
                path = Path.cwd() / path
            if path.suffix != ".db":
                path = path.with_suffix(".db")
            self._db_path = str(path)
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    async def init(self) -> None:
        """Initialise database schema."""
        self._require_path()
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.execute(_CONVERSATIONS_DDL)
                connection.execute(_MESSAGES_DDL)
                for statement in _CREATE_INDEXES:
                    connection.execute(statement)
                connection.commit()

        await self._run(_init)
        logger.info("Message cache initialised at %s", self._db_path)

    async def _find_default_conversation(self, user_id: str) -> Optional[str]:
        row = await self._run(
            self._fetchone,
            "SELECT id FROM conversations WHERE user_id = ? AND is_default = 1",
            (user_id,),
        )
        return row["id"] if row else None

    async def _create_conversation(self, conversation: Conversation) -> None:
        async with self._write_lock:
            await self._run(
                self._execute,
                "INSERT INTO conversations (id, user_id, title, is_default, created_at) VALUES (?, ?, ?, 1, ?)"
                " ON CONFLICT DO NOTHING",
                (conversation.id, conversation.user_id, conversation.title, format_ts(conversation.created_at)),
            )

    async def save_message(self, message: Message, user_id: str, conversation_id: Optional[str] = None) -> None:
        if conversation_id is None:
            conversation_id = await self.get_or_create_default_conversation(user_id)
        record = _to_row(message_to_record(message, user_id, conversation_id))
        async with self._write_lock:
            await self._run(self._execute, _UPSERT_MESSAGE, record)
        logger.debug("Message %s saved to cache", message.id)

    async def save_messages(
        self,
        messages: Sequence[Message],
        user_id: str,
        conversation_id: Optional[str] = None,
    ) -> int:
        if not messages:
            return 0
        if conversation_id is None:
            conversation_id = await self.get_or_create_default_conversation(user_id)
        rows = [_to_row(message_to_record(message, user_id, conversation_id)) for message in messages]

        def _insert_all() -> None:
            with sqlite3.connect(self._db_path) as connection:
                _ensure_pragmas(connection)
                connection.executemany(_UPSERT_MESSAGE, rows)
                connection.commit()

        async with self._write_lock:
            await self._run(_insert_all)
        logger.info("Saved %d messages to cache in batch", len(rows))
        return len(rows)

    async def load_messages(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> list[Message]:
        conditions = ["user_id = ?"]
        params: list[Any] = [user_id]
        if conversation_id is not None:
            conditions.append("conversation_id = ?")
            params.append(conversation_id)
        if since is not None:
            conditions.append("timestamp > ?")
            params.append(format_ts(since))
        query = (
            "SELECT id, content, is_user, timestamp, parent_id, project_cards FROM messages"
            f" WHERE {' AND '.join(conditions)} ORDER BY timestamp DESC, rowid DESC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        rows = await self._run(self._fetchall, query, tuple(params))
        messages: list[Message] = []
        for row in reversed(rows):
            try:
                messages.append(record_to_message(row))
            except ValidationFailure as exc:
                logger.warning("Skipping unreadable cached message: %s", exc)
        logger.debug("Loaded %d messages from cache", len(messages))
        return messages

    async def delete_message(self, message_id: str, user_id: str) -> None:
        async with self._write_lock:
            await self._run(
                self._execute,
                "DELETE FROM messages WHERE id = ? AND user_id = ?",
                (message_id, user_id),
            )

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        self._require_path()
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise Unavailable(f"Message cache unavailable: {exc}") from exc

    def _require_path(self) -> None:
        if not self._db_path:
            raise ConfigurationMissing("Message cache database path is not configured")

    def _execute(self, query: str, params: Any = ()) -> None:
        with sqlite3.connect(self._db_path) as connection:
            _ensure_pragmas(connection)
            connection.execute(query, params)
            connection.commit()

    def _fetchall(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchall()

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        with sqlite3.connect(self._db_path) as connection:
            connection.row_factory = sqlite3.Row
            _ensure_pragmas(connection)
            cursor = connection.execute(query, params)
            return cursor.fetchone()


def _to_row(record: dict[str, Any]) -> dict[str, Any]:
    row = dict(record)
    row["is_user"] = 1 if record["is_user"] else 0
    return row
