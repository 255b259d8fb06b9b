from __future__ import annotations

import logging
from typing import Iterable, Optional

from .models import Message

logger = logging.getLogger(__name__)


class ConversationTree:
    """Arena of messages keyed by id plus the currently active message.

    Messages form a forest through ``parent_id``. The active path is never
    stored; it is recomputed from the active id on every read.
    """

    def __init__(self) -> None:
        self._messages: dict[str, Message] = {}
        self._active_id: Optional[str] = None

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def __len__(self) -> int:
        return len(self._messages)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._messages

    def get(self, message_id: str) -> Optional[Message]:
        return self._messages.get(message_id)

    def messages(self) -> list[Message]:
        """Snapshot of all messages in insertion order."""
        return list(self._messages.values())

    def load(self, messages: Iterable[Message]) -> None:
        """Replace the whole tree; the newest message becomes active."""
        loaded = {message.id: message for message in messages}
        self._messages = loaded
        self._active_id = None
        if loaded:
            newest = max(loaded.values(), key=lambda message: message.timestamp)
            self._active_id = newest.id
        logger.debug("Loaded %d messages into conversation tree", len(loaded))

    def clear(self) -> None:
        self._messages = {}
        self._active_id = None

    def append(self, message: Message) -> None:
        if message.id in self._messages:
            raise ValueError(f"Message id {message.id} already present")
        self._messages[message.id] = message
        self._active_id = message.id

    def merge(self, messages: Iterable[Message]) -> int:
        """Add messages not yet present without moving the active id."""
        added = 0
        for message in messages:
            if message.id not in self._messages:
                self._messages[message.id] = message
                added += 1
        return added

    def remove(self, message_id: str) -> Optional[Message]:
        message = self._messages.pop(message_id, None)
        if message is None:
            return None
        if self._active_id == message_id:
            parent = message.parent_id
            self._active_id = parent if parent in self._messages else None
        return message

    def select_active(self, message_id: str) -> bool:
        if message_id not in self._messages:
            logger.debug("Ignoring selection of unknown message %s", message_id)
            return False
        self._active_id = message_id
        return True

    def active_path(self) -> list[Message]:
        if self._active_id is None:
            return []
        return self.context_history(self._active_id)

    def active_path_ids(self) -> set[str]:
        return {message.id for message in self.active_path()}

    def context_history(self, from_id: Optional[str]) -> list[Message]:
        """Messages from the root down to ``from_id``, oldest first.

        The walk stops at a missing parent or a revisited id, so a dangling
        reference truncates the history instead of failing.
        """
        if from_id is None:
            return []
        path: list[Message] = []
        seen: set[str] = set()
        current_id: Optional[str] = from_id
        while current_id is not None and current_id not in seen:
            message = self._messages.get(current_id)
            if message is None:
                break
            seen.add(current_id)
            path.append(message)
            current_id = message.parent_id
        path.reverse()
        return path

    def children_of(self, message_id: Optional[str]) -> list[Message]:
        children = [message for message in self._messages.values() if message.parent_id == message_id]
        children.sort(key=lambda message: message.timestamp)
        return children

    def siblings_of(self, message_id: str) -> list[Message]:
        message = self._messages.get(message_id)
        if message is None:
            return []
        return [sibling for sibling in self.children_of(message.parent_id) if sibling.id != message_id]
