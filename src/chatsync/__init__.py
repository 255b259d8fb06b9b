# Copyright (c) 2025 The chatsync Authors
# SPDX-License-Identifier: MIT

"""Conversation tree and dual-store synchronization engine."""

from .chat import ChatSession
from .conversation import ConversationTree, Message

__all__ = ["ChatSession", "ConversationTree", "Message"]
