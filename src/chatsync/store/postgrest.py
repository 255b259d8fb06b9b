from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence

import httpx

from chatsync.conversation.models import Conversation, Message, format_ts
from chatsync.vault import CredentialVault

from .base import MessageStore
from .errors import ConfigurationMissing, StoreError, Unavailable, ValidationFailure
from .records import message_to_record, record_to_message

logger = logging.getLogger(__name__)

PRIMARY_KEY_VAULT_ENTRY = "primary-api-key"

_UPSERT_PREFER = "resolution=merge-duplicates,return=minimal"
_INSERT_IGNORE_PREFER = "resolution=ignore-duplicates,return=minimal"


class PostgrestMessageStore(MessageStore):
    """Hosted message store reached over a PostgREST-style REST API.

    Rows live in ``conversations`` and ``messages`` tables. Writes are
    upserts keyed by id so repeating a save never duplicates a message.
    """

    name = "primary"

    def __init__(
        self,
        base_url: str = "",
        api_key: str = "",
        *,
        vault: Optional[CredentialVault] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        page_size: int = 100,
        timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._vault = vault
        self._transport = transport
        self._page_size = page_size
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    def has_configuration(self) -> bool:
        return bool(self._base_url and self._resolve_api_key())

    async def _find_default_conversation(self, user_id: str) -> Optional[str]:
        response = await self._request(
            "GET",
            "/conversations",
            params={
                "select": "id",
                "user_id": f"eq.{user_id}",
                "order": "created_at.asc",
                "limit": "1",
            },
        )
        rows = _json_rows(response)
        return str(rows[0]["id"]) if rows else None

    async def _create_conversation(self, conversation: Conversation) -> None:
        await self._request(
            "POST",
            "/conversations",
            params={"on_conflict": "id"},
            headers={"Prefer": _INSERT_IGNORE_PREFER},
            json=[
                {
                    "id": conversation.id,
                    "user_id": conversation.user_id,
                    "title": conversation.title,
                    "created_at": format_ts(conversation.created_at),
                }
            ],
        )

    async def save_message(self, message: Message, user_id: str, conversation_id: Optional[str] = None) -> None:
        if conversation_id is None:
            conversation_id = await self.get_or_create_default_conversation(user_id)
        await self._upsert_messages([message_to_record(message, user_id, conversation_id)])
        logger.debug("Message %s saved to primary store", message.id)

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

        saved = 0
        last_error: Optional[StoreError] = None
        for start in range(0, len(messages), self._page_size):
            chunk = messages[start : start + self._page_size]
            try:
                await self._upsert_messages([message_to_record(m, user_id, conversation_id) for m in chunk])
                saved += len(chunk)
            except StoreError as exc:
                last_error = exc
                logger.warning("Failed to save batch of %d messages to primary store: %s", len(chunk), exc)
        if saved == 0 and last_error is not None:
            raise Unavailable("No messages could be saved to the primary store") from last_error
        logger.info("Saved %d/%d messages to primary store", saved, len(messages))
        return saved

    async def load_messages(
        self,
        user_id: str,
        conversation_id: Optional[str] = None,
        limit: Optional[int] = None,
        since: Optional[datetime] = None,
    ) -> list[Message]:
        params: dict[str, str] = {
            "select": "*",
            "user_id": f"eq.{user_id}",
            "order": "timestamp.desc,id.desc",
        }
        if conversation_id is not None:
            params["conversation_id"] = f"eq.{conversation_id}"
        if since is not None:
            params["timestamp"] = f"gt.{format_ts(since)}"

        rows: list[dict[str, Any]] = []
        offset = 0
        while limit is None or len(rows) < limit:
            page_size = self._page_size if limit is None else min(self._page_size, limit - len(rows))
            page_params = dict(params, limit=str(page_size), offset=str(offset))
            page = _json_rows(await self._request("GET", "/messages", params=page_params))
            rows.extend(page)
            offset += len(page)
            if len(page) < page_size:
                break

        messages: list[Message] = []
        for row in reversed(rows):
            try:
                messages.append(record_to_message(row))
            except ValidationFailure as exc:
                logger.warning("Skipping unreadable primary message: %s", exc)
        logger.debug("Loaded %d messages from primary store", len(messages))
        return messages

    async def delete_message(self, message_id: str, user_id: str) -> None:
        await self._request(
            "DELETE",
            "/messages",
            params={"id": f"eq.{message_id}", "user_id": f"eq.{user_id}"},
            headers={"Prefer": "return=minimal"},
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _upsert_messages(self, records: list[dict[str, Any]]) -> None:
        await self._request(
            "POST",
            "/messages",
            params={"on_conflict": "id"},
            headers={"Prefer": _UPSERT_PREFER},
            json=records,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise Unavailable(f"Primary store unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise Unavailable(
                f"Primary store rejected {method} {path} ({response.status_code}): {response.text[:200]}"
            )
        return response

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        api_key = self._resolve_api_key()
        if not self._base_url or not api_key:
            raise ConfigurationMissing("Primary store URL or API key is not configured")
        self._client = httpx.AsyncClient(
            base_url=f"{self._base_url}/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )
        return self._client

    def _resolve_api_key(self) -> str:
        if self._api_key:
            return self._api_key
        if self._vault is not None:
            return self._vault.get(PRIMARY_KEY_VAULT_ENTRY) or ""
        return ""


def _json_rows(response: httpx.Response) -> list[dict[str, Any]]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise Unavailable(f"Primary store returned invalid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise Unavailable("Primary store returned an unexpected payload")
    return [row for row in payload if isinstance(row, dict)]
