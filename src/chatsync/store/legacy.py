"""Readers for message history kept only on the device by earlier releases.

Older clients serialised the whole message list as one JSON document. The
records use camelCase keys (``isUser``, ``parentId``, ``projectCards``) and
some web exports use ``role``/``text`` instead of ``isUser``/``content``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Protocol

from chatsync.conversation.models import Author, Message, Project, parse_ts, utc_now

from .errors import ValidationFailure

logger = logging.getLogger(__name__)


class LegacyMessageSource(Protocol):
    async def load(self) -> list[Message]: ...


class JsonLegacyMessageSource:
    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    async def load(self) -> list[Message]:
        if not self.path.exists():
            return []
        try:
            raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
            payload = json.loads(raw)
        except (OSError, ValueError) as exc:
            logger.warning("Legacy message file %s is unreadable: %s", self.path, exc)
            return []
        return parse_legacy_payload(payload)


def parse_legacy_payload(payload: Any) -> list[Message]:
    """Parse either a bare list of records or a ``{"messages": [...]}`` object."""
    if isinstance(payload, dict):
        payload = payload.get("messages") or []
    if not isinstance(payload, list):
        return []
    return parse_legacy_records(payload)


def parse_legacy_records(records: Iterable[Any]) -> list[Message]:
    messages: list[Message] = []
    for record in records:
        try:
            messages.append(parse_legacy_record(record))
        except ValidationFailure as exc:
            logger.warning("Skipping legacy record: %s", exc)
    messages.sort(key=lambda message: message.timestamp)
    return messages


def parse_legacy_record(record: Any) -> Message:
    if not isinstance(record, dict):
        raise ValidationFailure("record is not an object")

    message_id = record.get("id")
    if not isinstance(message_id, str) or not message_id.strip():
        raise ValidationFailure("record has no id")

    content = record.get("content")
    if content is None:
        content = record.get("text")
    if not isinstance(content, str):
        raise ValidationFailure(f"record {message_id} has no content")

    is_user = record.get("isUser")
    if not isinstance(is_user, bool):
        role = record.get("role")
        if not isinstance(role, str):
            raise ValidationFailure(f"record {message_id} has no author")
        is_user = role == "user"

    timestamp = utc_now()
    raw_timestamp = record.get("timestamp")
    if isinstance(raw_timestamp, str):
        try:
            timestamp = parse_ts(raw_timestamp)
        except ValueError:
            logger.debug("Record %s has an unparseable timestamp, using now", message_id)

    parent_id: Optional[str] = record.get("parentId") if isinstance(record.get("parentId"), str) else None

    return Message(
        id=message_id,
        content=content,
        author=Author.USER if is_user else Author.ASSISTANT,
        timestamp=timestamp,
        parent_id=parent_id or None,
        annotations=_parse_project_cards(record.get("projectCards")),
    )


def _parse_project_cards(cards: Any) -> tuple[Project, ...]:
    if not isinstance(cards, list):
        return ()
    projects = []
    for card in cards:
        if isinstance(card, dict) and isinstance(card.get("name"), str):
            projects.append(Project.from_dict(card))
    return tuple(projects)
