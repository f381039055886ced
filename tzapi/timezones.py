from __future__ import annotations

from functools import lru_cache
from typing import FrozenSet, Optional
from zoneinfo import available_timezones

from tzapi.errors import ValidationError


@lru_cache(maxsize=1)
def known_timezones() -> FrozenSet[str]:
    # Backed by the system tz database, or the `tzdata` package when the system has none.
    return frozenset(available_timezones())


def is_valid_timezone(name: Optional[str]) -> bool:
    return bool(name) and name in known_timezones()


def validate_timezone(name: Optional[str]) -> str:
    """
    Return the trimmed IANA zone name, or raise ValidationError.

    Lookup is an exact match against the tz database key set, so paths like
    `../etc/passwd` or case variants such as `europe/paris` are rejected.
    """
    tz = (name or "").strip()
    if not tz:
        raise ValidationError("Timezone is required", code="timezone_required")
    if not is_valid_timezone(tz):
        raise ValidationError("Invalid timezone", code="invalid_timezone")
    return tz
