from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from chatsync.chat import ChatSession
from chatsync.conversation.models import Message

from .dependencies import get_chat_session
from .schemas import (
    ConversationMessage,
    ConversationState,
    DeleteResponse,
    ProjectCard,
    SendMessageRequest,
    SendMessageResponse,
    SyncResponse,
)

router = APIRouter(prefix="/api/conversation", tags=["conversation"])


@router.get("", response_model=ConversationState)
async def get_conversation(session: ChatSession = Depends(get_chat_session)) -> ConversationState:
    return _to_state(session)


@router.post("/messages", status_code=status.HTTP_201_CREATED, response_model=SendMessageResponse)
async def send_message(
    payload: SendMessageRequest,
    session: ChatSession = Depends(get_chat_session),
) -> SendMessageResponse:
    reply = await session.send_message(payload.content)
    if reply is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=session.error_message or "Not authenticated",
        )
    active = session.tree.active_path_ids()
    return SendMessageResponse(reply=_to_message(reply, active), conversation=_to_state(session))


@router.post("/messages/{message_id}/select", response_model=ConversationState)
async def select_message(
    message_id: str,
    session: ChatSession = Depends(get_chat_session),
) -> ConversationState:
    session.select_message(message_id)
    return _to_state(session)


@router.delete("/messages/{message_id}", response_model=DeleteResponse)
async def delete_message(
    message_id: str,
    session: ChatSession = Depends(get_chat_session),
) -> DeleteResponse:
    if not await session.delete_message(message_id):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=session.error_message or "Delete failed",
        )
    return DeleteResponse(success=True)


@router.post("/sync", response_model=SyncResponse)
async def sync_conversation(session: ChatSession = Depends(get_chat_session)) -> SyncResponse:
    report = await session.sync_now()
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=session.error_message or "Sync failed",
        )
    return SyncResponse(
        conflicts=report.conflicts,
        propagated=report.propagated,
        failures=report.failures,
        last_sync_at=session.sync.last_sync_at(),
    )


def _to_message(message: Message, active_ids: set[str]) -> ConversationMessage:
    return ConversationMessage(
        id=message.id,
        content=message.content,
        author=message.author.value,
        timestamp=message.timestamp,
        parent_id=message.parent_id,
        projects=[
            ProjectCard(
                name=project.name,
                description=project.description,
                status=project.status,
                tags=list(project.tags),
            )
            for project in message.annotations
        ],
        is_active=message.id in active_ids,
    )


def _to_state(session: ChatSession) -> ConversationState:
    path = session.tree.active_path()
    active_ids = {message.id for message in path}
    messages = sorted(session.tree.messages(), key=lambda message: message.timestamp)
    return ConversationState(
        user_id=session.user_id,
        active_id=session.tree.active_id,
        active_path=[message.id for message in path],
        messages=[_to_message(message, active_ids) for message in messages],
        is_loading=session.is_loading,
        is_syncing=session.is_syncing,
        error_message=session.error_message,
        last_sync_at=session.sync.last_sync_at(),
    )
