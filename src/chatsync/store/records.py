from __future__ import annotations

import json
from typing import Any, Mapping, Optional

from chatsync.conversation.models import Author, Message, Project, format_ts, parse_ts

from .errors import ValidationFailure


def message_to_record(message: Message, user_id: str, conversation_id: Optional[str]) -> dict[str, Any]:
    """Flatten a message into the column layout shared by both stores."""
    project_cards = None
    if message.annotations:
        project_cards = json.dumps([project.to_dict() for project in message.annotations], ensure_ascii=False)
    return {
        "id": message.id,
        "user_id": user_id,
        "conversation_id": conversation_id,
        "content": message.content,
        "is_user": message.is_user,
        "timestamp": format_ts(message.timestamp),
        "parent_id": message.parent_id,
        "project_cards": project_cards,
    }


def record_to_message(record: Mapping[str, Any]) -> Message:
    try:
        message_id = record["id"]
        content = record["content"]
        is_user = record["is_user"]
        timestamp = parse_ts(str(record["timestamp"]))
    except (KeyError, IndexError, TypeError, ValueError) as exc:
        raise ValidationFailure(f"Malformed message record: {exc}") from exc

    if not message_id or content is None or is_user is None:
        raise ValidationFailure(f"Message record {message_id!r} is missing required fields")

    parent_id = _optional_field(record, "parent_id")
    return Message(
        id=str(message_id),
        content=str(content),
        author=Author.USER if bool(is_user) else Author.ASSISTANT,
        timestamp=timestamp,
        parent_id=str(parent_id) if parent_id else None,
        annotations=_parse_project_cards(_optional_field(record, "project_cards")),
    )


def _optional_field(record: Mapping[str, Any], key: str) -> Any:
    try:
        return record[key]
    except (KeyError, IndexError):
        return None


def _parse_project_cards(raw: Any) -> tuple[Project, ...]:
    if not raw:
        return ()
    try:
        items = json.loads(raw) if isinstance(raw, str) else raw
        return tuple(Project.from_dict(item) for item in items)
    except (TypeError, ValueError, KeyError):
        # malformed cards are dropped, the message itself is kept
        return ()
