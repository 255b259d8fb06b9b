"""Persistence adapters for the primary (hosted) and secondary (local) stores."""

from .base import MessageStore
from .errors import ConfigurationMissing, NotFound, StoreError, Unavailable, ValidationFailure
from .postgrest import PostgrestMessageStore
from .sqlite import SQLiteMessageStore

__all__ = [
    "ConfigurationMissing",
    "MessageStore",
    "NotFound",
    "PostgrestMessageStore",
    "SQLiteMessageStore",
    "StoreError",
    "Unavailable",
    "ValidationFailure",
]
