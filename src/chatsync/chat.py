from __future__ import annotations

import asyncio
import logging
from typing import Optional

from chatsync.conversation.models import Author, Message
from chatsync.conversation.tree import ConversationTree
from chatsync.gate import SessionGate
from chatsync.llm.completion import CompletionError, CompletionService
from chatsync.store.base import MessageStore
from chatsync.store.errors import ConfigurationMissing, NotFound, StoreError
from chatsync.sync.coordinator import DEFAULT_SYNC_INTERVAL, ConflictReport, SyncCoordinator
from chatsync.sync.migration import MigrationCoordinator

logger = logging.getLogger(__name__)


class ChatSession:
    """Drives one signed-in user's conversation over both stores.

    The tree is only mutated from this object and always holds the user's
    full message set. ``history_limit`` caps how many prior turns are sent to
    the completion service. Persistence failures never block the
    conversation; they degrade history to whatever store is reachable.
    """

    def __init__(
        self,
        gate: SessionGate,
        primary: MessageStore,
        secondary: MessageStore,
        migration: MigrationCoordinator,
        sync: SyncCoordinator,
        completion: Optional[CompletionService] = None,
        *,
        history_limit: Optional[int] = 100,
        sync_interval: float = DEFAULT_SYNC_INTERVAL,
        background_sync: bool = True,
    ) -> None:
        self.tree = ConversationTree()
        self.is_loading = False
        self.error_message: Optional[str] = None
        self._gate = gate
        self._primary = primary
        self._secondary = secondary
        self._migration = migration
        self._sync = sync
        self._completion = completion
        self._history_limit = history_limit
        self._sync_interval = sync_interval
        self._background_sync = background_sync
        self._loading_history = False
        self._user_id: Optional[str] = None
        self._conversation_ids: dict[str, Optional[str]] = {}

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def is_syncing(self) -> bool:
        return self._loading_history or self._sync.is_syncing

    @property
    def primary(self) -> MessageStore:
        return self._primary

    @property
    def secondary(self) -> MessageStore:
        return self._secondary

    @property
    def sync(self) -> SyncCoordinator:
        return self._sync

    async def activate(self) -> bool:
        """Migrate, reconcile and load history for the signed-in user."""
        user_id = self._current_user()
        if user_id is None:
            logger.info("No signed-in user; chat session not activated")
            return False
        self._user_id = user_id

        await self._migration.migrate(user_id)
        for store in (self._primary, self._secondary):
            self._conversation_ids[store.name] = await self._default_conversation(store, user_id)

        try:
            await self._sync.resolve_conflicts(user_id)
        except StoreError as exc:
            logger.warning("Skipping conflict resolution on activation: %s", exc)

        await self.load_history()
        if self._background_sync:
            self._sync.start_background_sync(user_id, self._sync_interval)
        return True

    async def load_history(self) -> int:
        user_id = self._current_user()
        if user_id is None:
            return 0
        self._loading_history = True
        try:
            messages = await self._load_from(self._primary, user_id)
            if not messages:
                messages = await self._load_from(self._secondary, user_id)
            self.tree.load(messages)
        finally:
            self._loading_history = False
        logger.info("Loaded %d messages for %s", len(self.tree), user_id)
        return len(self.tree)

    async def send_message(self, text: str) -> Optional[Message]:
        """Append a user turn and the assistant reply; returns the reply."""
        if not text.strip():
            return None
        user_id = self._current_user()
        if user_id is None:
            self.error_message = "Not authenticated"
            return None

        user_message = Message.create(text, Author.USER, parent_id=self.tree.active_id)
        self.tree.append(user_message)
        self.error_message = None
        await self._persist(user_message, user_id)

        self.is_loading = True
        try:
            history = self.tree.context_history(user_message.id)[:-1]
            if self._history_limit:
                history = history[-self._history_limit:]
            try:
                if self._completion is None:
                    raise CompletionError("Completion service not configured")
                completion = await self._completion.complete(history, text)
                reply = Message.create(
                    completion.text,
                    Author.ASSISTANT,
                    parent_id=user_message.id,
                    annotations=completion.projects,
                )
            except CompletionError as exc:
                self.error_message = str(exc)
                reply = Message.create(
                    f"Sorry, I encountered an error: {exc}",
                    Author.ASSISTANT,
                    parent_id=user_message.id,
                )
            self.tree.append(reply)
            await self._persist(reply, user_id)
        finally:
            self.is_loading = False
        return reply

    def select_message(self, message_id: str) -> bool:
        return self.tree.select_active(message_id)

    async def delete_message(self, message_id: str) -> bool:
        user_id = self._current_user()
        if user_id is None:
            self.error_message = "Not authenticated"
            return False
        results = await asyncio.gather(
            self._delete_from(self._primary, message_id, user_id),
            self._delete_from(self._secondary, message_id, user_id),
        )
        if not any(results):
            self.error_message = "Could not delete message: no message store is reachable"
            return False
        self.tree.remove(message_id)
        self.error_message = None
        return True

    async def sync_now(self) -> Optional[ConflictReport]:
        """User-initiated sync; failures are reported through ``error_message``."""
        user_id = self._current_user()
        if user_id is None:
            self.error_message = "Not authenticated"
            return None
        try:
            report = await self._sync.resolve_conflicts(user_id)
            await self._sync.sync_all(user_id)
        except StoreError as exc:
            logger.warning("Foreground sync failed: %s", exc)
            self.error_message = f"Sync failed: {exc}"
            return None
        if report.propagated:
            recovered = await self._load_from(self._primary, user_id)
            self.tree.merge(recovered)
        self.error_message = None
        return report

    def clear(self) -> None:
        self.tree.clear()
        self.error_message = None

    async def close(self) -> None:
        """Session teardown: stop the background timer and forget the user."""
        await self._sync.stop_background_sync()
        self.clear()
        self._user_id = None
        self._conversation_ids.clear()

    def _current_user(self) -> Optional[str]:
        try:
            if not self._gate.is_authenticated():
                return None
            return self._gate.current_user_id()
        except Exception as exc:  # noqa: BLE001 - identity provider errors mean "no user"
            logger.warning("Could not read current user: %s", exc)
            return None

    async def _default_conversation(self, store: MessageStore, user_id: str) -> Optional[str]:
        try:
            return await store.get_or_create_default_conversation(user_id)
        except ConfigurationMissing as exc:
            logger.info("%s store not configured: %s", store.name, exc)
        except StoreError as exc:
            logger.warning("Could not prepare conversation on %s store: %s", store.name, exc)
        return None

    async def _load_from(self, store: MessageStore, user_id: str) -> list[Message]:
        try:
            return await store.load_messages(user_id)
        except StoreError as exc:
            logger.warning("Error loading messages from %s store: %s", store.name, exc)
            return []

    async def _persist(self, message: Message, user_id: str) -> None:
        await asyncio.gather(
            self._save_to(self._primary, message, user_id),
            self._save_to(self._secondary, message, user_id),
        )

    async def _save_to(self, store: MessageStore, message: Message, user_id: str) -> bool:
        try:
            await store.save_message(message, user_id, self._conversation_ids.get(store.name))
            return True
        except ConfigurationMissing:
            logger.info("%s store not configured; message %s kept locally only", store.name, message.id)
        except StoreError as exc:
            logger.warning("Error saving message %s to %s store: %s", message.id, store.name, exc)
        return False

    async def _delete_from(self, store: MessageStore, message_id: str, user_id: str) -> bool:
        try:
            await store.delete_message(message_id, user_id)
            return True
        except NotFound:
            return True
        except StoreError as exc:
            logger.warning("Error deleting message %s from %s store: %s", message_id, store.name, exc)
            return False
