from __future__ import annotations

from typing import Optional, Protocol


class SessionGate(Protocol):
    """Identity provider view consumed by the sync engine."""

    def current_user_id(self) -> Optional[str]: ...

    def is_authenticated(self) -> bool: ...


class StaticSessionGate:
    """Session gate for a fixed user, e.g. one configured through the environment."""

    def __init__(self, user_id: Optional[str] = None) -> None:
        self._user_id = user_id

    def current_user_id(self) -> Optional[str]:
        return self._user_id

    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def sign_in(self, user_id: str) -> None:
        self._user_id = user_id

    def sign_out(self) -> None:
        self._user_id = None
