"""
Pytest config.

Local imports like `import tzapi` rely on the repo root being on sys.path; when a
global `pytest` entrypoint is used that doesn't happen reliably during collection, so
we pin it here.

No test needs a live Postgres, Redis or identity provider: the stores are swapped for
the in-memory doubles below through `tzapi.api.server.get_services`.
"""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

import redis  # noqa: E402

from tzapi.auth.session import SessionStore  # noqa: E402
from tzapi.config import load_config  # noqa: E402
from tzapi.storage.models import PreferenceRecord  # noqa: E402
from tzapi.timezones import validate_timezone  # noqa: E402

TEST_ENV = {
    "DATABASE_URL": "postgresql://tz:tz@localhost:5432/tz",
    "REDIS_URL": "redis://localhost:6379/0",
    "CLIENT_ID": "test-client-id",
    "CLIENT_SECRET": "test-client-secret",
    "REDIRECT_URI": "https://tz.example.com/auth/discord/callback",
    "SESSION_SECRET": "test-secret-key-for-testing-purposes-only",
}


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.Redis for SessionStore, with TTLs driven by a FakeClock."""

    def __init__(self, clock: FakeClock):
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise redis.ConnectionError("connection refused")

    def set(self, name: str, value: str, ex: Optional[int] = None) -> bool:
        self._check()
        self._data[name] = (value, self._clock() + ex if ex else None)
        return True

    def get(self, name: str) -> Optional[str]:
        self._check()
        item = self._data.get(name)
        if item is None:
            return None
        value, expires = item
        if expires is not None and expires <= self._clock():
            del self._data[name]
            return None
        return value

    def delete(self, *names: str) -> int:
        self._check()
        return sum(1 for n in names if self._data.pop(n, None) is not None)

    def ping(self) -> bool:
        self._check()
        return True

    def close(self) -> None:
        return None

    def keys_with_prefix(self, prefix: str) -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class InMemoryPreferenceStore:
    """Dict-backed stand-in for PreferenceStore with the same validation rules."""

    def __init__(self) -> None:
        self._rows: Dict[str, PreferenceRecord] = {}
        self.healthy = True
        self._tick = 0

    def _now(self) -> datetime:
        self._tick += 1
        return datetime(2024, 1, 1, tzinfo=timezone.utc) + timedelta(seconds=self._tick)

    def get(self, user_id: str) -> Optional[PreferenceRecord]:
        return self._rows.get(user_id)

    def upsert(self, user_id: str, username: str, timezone: str) -> PreferenceRecord:
        tz = validate_timezone(timezone)
        now = self._now()
        prev = self._rows.get(user_id)
        record = PreferenceRecord(
            user_id=user_id,
            username=username,
            timezone=tz,
            created_at=prev.created_at if prev else now,
            updated_at=now,
        )
        self._rows[user_id] = record
        return record

    def delete(self, user_id: str) -> None:
        self._rows.pop(user_id, None)

    def list_all(self) -> List[PreferenceRecord]:
        return [self._rows[k] for k in sorted(self._rows)]

    def ping(self) -> bool:
        return self.healthy

    def close(self) -> None:
        return None


@pytest.fixture(autouse=True)
def _test_env(monkeypatch: pytest.MonkeyPatch):
    for k, v in TEST_ENV.items():
        monkeypatch.setenv(k, v)
    load_config.cache_clear()
    yield
    load_config.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_redis(clock: FakeClock) -> FakeRedis:
    return FakeRedis(clock)


@pytest.fixture
def services(monkeypatch: pytest.MonkeyPatch, fake_redis: FakeRedis, clock: FakeClock):
    """Install in-memory stores behind the API server."""
    import tzapi.api.server as ws

    cfg = load_config()
    svc = ws.Services(
        config=cfg,
        sessions=SessionStore(fake_redis, ttl_seconds=cfg.session.ttl_seconds, clock=clock),
        preferences=InMemoryPreferenceStore(),
    )
    monkeypatch.setattr(ws, "get_services", lambda: svc)
    return svc
