# Copyright (c) 2025 The chatsync Authors
# SPDX-License-Identifier: MIT

"""HTTP surface for the chat session. ``app`` is imported on first access."""

from typing import TYPE_CHECKING

__all__ = ["app"]

if TYPE_CHECKING:  # pragma: no cover
    from .app import app


def __getattr__(name: str):
    if name != "app":
        raise AttributeError(name)
    from .app import app as chat_app

    return chat_app
