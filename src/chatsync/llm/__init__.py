"""Completion service adapter and project annotation extraction."""

from .completion import Completion, CompletionError, CompletionService, build_chat_model
from .projects import ProjectCatalog, extract_project_tags

__all__ = [
    "Completion",
    "CompletionError",
    "CompletionService",
    "ProjectCatalog",
    "build_chat_model",
    "extract_project_tags",
]
