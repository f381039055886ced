from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class UserIdentity:
    """Authenticated user as reported by the identity provider."""

    id: str
    username: str
    avatar: Optional[str] = None

    def to_public_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "username": self.username, "avatar": self.avatar}


@dataclass(frozen=True)
class SessionRecord:
    """Server-side session, stored in Redis under `session:<session_token>`."""

    session_token: str
    user_id: str
    username: str
    avatar: Optional[str]
    provider_access_token: str
    expires_at: float  # unix seconds

    @property
    def identity(self) -> UserIdentity:
        return UserIdentity(id=self.user_id, username=self.username, avatar=self.avatar)
