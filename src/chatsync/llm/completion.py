from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from chatsync.config.settings import Settings
from chatsync.conversation.models import Message, Project

from .projects import ProjectCatalog, extract_project_tags

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful conversational assistant. When a reply is about one of the known "
    "projects, mention it with a [PROJECT:name] tag so the client can show a project card."
)


class CompletionError(Exception):
    """The completion service could not produce a reply."""


@dataclass(frozen=True, slots=True)
class Completion:
    text: str
    projects: tuple[Project, ...] = ()


class CompletionService:
    def __init__(
        self,
        llm: BaseChatModel,
        catalog: Optional[ProjectCatalog] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self._llm = llm
        self._catalog = catalog or ProjectCatalog()
        self._system_prompt = system_prompt

    async def complete(self, history: Sequence[Message], text: str) -> Completion:
        """Ask the model for a reply to ``text`` given the prior context, oldest first."""
        prompt = self._build_messages(history, text)
        try:
            reply = await self._llm.ainvoke(prompt)
        except Exception as exc:  # noqa: BLE001 - provider errors vary by backend
            logger.warning("Completion request failed: %s", exc)
            raise CompletionError(str(exc) or exc.__class__.__name__) from exc

        content = _stringify_content(getattr(reply, "content", reply))
        if not content.strip():
            raise CompletionError("Invalid response from completion service")

        cleaned, projects = extract_project_tags(content, self._catalog)
        return Completion(text=cleaned, projects=tuple(projects))

    def _build_messages(self, history: Sequence[Message], text: str) -> list[BaseMessage]:
        messages: list[BaseMessage] = [SystemMessage(content=self._system_prompt)]
        for message in history:
            if message.is_user:
                messages.append(HumanMessage(content=message.content))
            else:
                messages.append(AIMessage(content=message.content))
        messages.append(HumanMessage(content=text))
        return messages


def build_chat_model(settings: Settings) -> BaseChatModel:
    if not settings.api_key:
        raise CompletionError("Completion API key not configured")

    from langchain_openai import ChatOpenAI

    return ChatOpenAI(
        model=settings.model,
        api_key=settings.api_key,
        base_url=settings.api_base or None,
        max_tokens=1000,
    )


def _stringify_content(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and item.get("type") == "text" and item.get("text"):
                parts.append(str(item["text"]))
        return "".join(parts)
    return str(content)
