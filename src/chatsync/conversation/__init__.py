"""Message model and the in-memory branching conversation tree."""

from .models import Author, Conversation, Message, Project
from .tree import ConversationTree

__all__ = ["Author", "Conversation", "ConversationTree", "Message", "Project"]
