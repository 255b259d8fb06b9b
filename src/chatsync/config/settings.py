from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .loader import get_bool_env, get_float_env, get_int_env, get_str_env


@dataclass(slots=True)
class Settings:
    primary_url: str = ""
    primary_key: str = ""
    cache_db_path: str = "chatsync_cache.db"
    state_path: str = "chatsync_state.json"
    legacy_path: str = ""
    projects_path: str = ""
    sync_interval: float = 300.0
    background_sync: bool = True
    history_limit: int = 100
    user_id: Optional[str] = None
    model: str = "gpt-4o"
    api_key: str = ""
    api_base: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            primary_url=get_str_env("CHATSYNC_PRIMARY_URL"),
            primary_key=get_str_env("CHATSYNC_PRIMARY_KEY"),
            cache_db_path=get_str_env("CHATSYNC_CACHE_DB_PATH", "chatsync_cache.db"),
            state_path=get_str_env("CHATSYNC_STATE_PATH", "chatsync_state.json"),
            legacy_path=get_str_env("CHATSYNC_LEGACY_PATH"),
            projects_path=get_str_env("CHATSYNC_PROJECTS_PATH"),
            sync_interval=get_float_env("CHATSYNC_SYNC_INTERVAL", 300.0),
            background_sync=get_bool_env("CHATSYNC_BACKGROUND_SYNC", True),
            history_limit=get_int_env("CHATSYNC_HISTORY_LIMIT", 100),
            user_id=get_str_env("CHATSYNC_USER_ID") or None,
            model=get_str_env("CHATSYNC_MODEL", "gpt-4o"),
            api_key=get_str_env("CHATSYNC_API_KEY"),
            api_base=get_str_env("CHATSYNC_API_BASE"),
        )
