from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class PreferenceRecord:
    """One row of the `timezones` table."""

    user_id: str
    username: str
    timezone: Optional[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "user": {"id": self.user_id, "username": self.username},
            "timezone": self.timezone,
        }
