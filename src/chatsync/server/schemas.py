from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class ProjectCard(BaseModel):
    name: str
    description: str = ""
    status: str = ""
    tags: list[str] = Field(default_factory=list)


class ConversationMessage(BaseModel):
    id: str
    content: str
    author: str
    timestamp: datetime
    parent_id: Optional[str] = None
    projects: list[ProjectCard] = Field(default_factory=list)
    is_active: bool = False


class ConversationState(BaseModel):
    user_id: Optional[str] = None
    active_id: Optional[str] = None
    active_path: list[str] = Field(default_factory=list)
    messages: list[ConversationMessage] = Field(default_factory=list)
    is_loading: bool = False
    is_syncing: bool = False
    error_message: Optional[str] = None
    last_sync_at: Optional[datetime] = None


class SendMessageRequest(BaseModel):
    content: str = Field(description="User message text.")

    @field_validator("content")
    @classmethod
    def validate_content(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Message content must not be blank")
        return value


class SendMessageResponse(BaseModel):
    reply: Optional[ConversationMessage] = None
    conversation: ConversationState


class SyncResponse(BaseModel):
    conflicts: int
    propagated: int
    failures: int
    last_sync_at: Optional[datetime] = None


class DeleteResponse(BaseModel):
    success: bool
