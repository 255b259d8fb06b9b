from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Optional
from uuid import NAMESPACE_URL, uuid4, uuid5


class Author(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class Project:
    name: str
    description: str = ""
    status: str = ""
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "tags": list(self.tags),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        tags = data.get("tags")
        if tags is None:
            tags = data.get("tech") or []
        return cls(
            name=str(data["name"]),
            description=str(data.get("description") or ""),
            status=str(data.get("status") or ""),
            tags=tuple(str(tag) for tag in tags),
        )


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    content: str
    author: Author
    timestamp: datetime
    parent_id: Optional[str] = None
    annotations: tuple[Project, ...] = field(default_factory=tuple)

    @classmethod
    def create(
        cls,
        content: str,
        author: Author,
        *,
        parent_id: Optional[str] = None,
        annotations: Iterable[Project] = (),
    ) -> "Message":
        """Build a new message with a fresh id and the current time."""
        return cls(
            id=uuid4().hex,
            content=content,
            author=author,
            timestamp=utc_now(),
            parent_id=parent_id,
            annotations=tuple(annotations),
        )

    @property
    def is_user(self) -> bool:
        return self.author is Author.USER

    def differs_from(self, other: "Message") -> bool:
        return self.content != other.content or self.timestamp != other.timestamp


@dataclass(slots=True)
class Conversation:
    id: str
    user_id: str
    title: Optional[str]
    created_at: datetime


def default_conversation_id(user_id: str) -> str:
    """Stable id for a user's default conversation, identical on every backend."""
    return uuid5(NAMESPACE_URL, f"chatsync:default-conversation:{user_id}").hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
