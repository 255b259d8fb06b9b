from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends

from chatsync.chat import ChatSession
from chatsync.config.settings import Settings
from chatsync.gate import SessionGate, StaticSessionGate
from chatsync.llm.completion import CompletionError, CompletionService, build_chat_model
from chatsync.llm.projects import ProjectCatalog
from chatsync.store.legacy import JsonLegacyMessageSource
from chatsync.store.postgrest import PostgrestMessageStore
from chatsync.store.sqlite import SQLiteMessageStore
from chatsync.sync.coordinator import SyncCoordinator
from chatsync.sync.migration import MigrationCoordinator
from chatsync.sync.state import MigrationLatch, SyncClock, SyncStateStore
from chatsync.vault import CredentialVault, InMemoryVault

logger = logging.getLogger(__name__)

_CHAT_SESSION: Optional[ChatSession] = None


def build_chat_session(
    settings: Settings,
    *,
    gate: Optional[SessionGate] = None,
    vault: Optional[CredentialVault] = None,
) -> ChatSession:
    """Wire both stores, the coordinators and the completion service."""
    primary = PostgrestMessageStore(settings.primary_url, settings.primary_key, vault=vault or InMemoryVault())
    secondary = SQLiteMessageStore(settings.cache_db_path)
    state = SyncStateStore(settings.state_path)
    legacy = JsonLegacyMessageSource(settings.legacy_path) if settings.legacy_path else None
    catalog = ProjectCatalog.from_file(settings.projects_path) if settings.projects_path else None

    completion: Optional[CompletionService] = None
    try:
        completion = CompletionService(build_chat_model(settings), catalog)
    except CompletionError as exc:
        logger.warning("Completion service unavailable: %s", exc)

    return ChatSession(
        gate or StaticSessionGate(settings.user_id),
        primary,
        secondary,
        MigrationCoordinator(primary, MigrationLatch(state), legacy=legacy, secondary=secondary),
        SyncCoordinator(primary, secondary, SyncClock(state)),
        completion,
        history_limit=settings.history_limit,
        sync_interval=settings.sync_interval,
        background_sync=settings.background_sync,
    )


def initialise_chat_session() -> ChatSession:
    """Create the chat session instance using configuration."""
    global _CHAT_SESSION
    if _CHAT_SESSION is not None:
        return _CHAT_SESSION

    session = build_chat_session(Settings.from_env())
    _CHAT_SESSION = session
    logger.info("Initialised chat session with cache at %s", getattr(session.secondary, "db_path", ""))
    return session


def set_chat_session(session: Optional[ChatSession]) -> None:
    global _CHAT_SESSION
    _CHAT_SESSION = session


def get_chat_session(_: ChatSession = Depends(initialise_chat_session)) -> ChatSession:
    if _CHAT_SESSION is None:
        raise RuntimeError("Chat session has not been initialised")
    return _CHAT_SESSION
