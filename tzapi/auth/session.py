from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

import redis

from tzapi.auth.models import SessionRecord, UserIdentity
from tzapi.auth.util import random_token
from tzapi.config import SessionConfig
from tzapi.errors import StorageError

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "session:"


def session_cookie_name(cfg: SessionConfig) -> str:
    # `__Host-` requires Secure + Path=/ + no Domain; browsers may reject it on HTTP.
    return "__Host-tz_session" if cfg.cookie_secure else "tz_session"


def session_cookie_kwargs(cfg: SessionConfig, value: str) -> dict:
    return {
        "key": session_cookie_name(cfg),
        "value": value,
        "max_age": cfg.ttl_seconds,
        "httponly": True,
        "secure": cfg.cookie_secure,
        "samesite": cfg.cookie_samesite,
        "path": "/",
    }


def clear_session_cookie_kwargs(cfg: SessionConfig) -> dict:
    kwargs = session_cookie_kwargs(cfg, "")
    kwargs["max_age"] = 0
    return kwargs


def _key(token: str) -> str:
    return f"{SESSION_KEY_PREFIX}{token}"


class SessionStore:
    """
    Short-lived sessions in Redis: opaque token -> identity + provider access token.

    Expiry is delegated to Redis (`SET ... EX`); `expires_at` is kept in the payload as
    well so a record is never honoured past its TTL even if eviction lags.
    """

    def __init__(self, client: redis.Redis, *, ttl_seconds: int, clock: Callable[[], float] = time.time):
        self._client = client
        self._ttl = ttl_seconds
        self._clock = clock

    def create_session(self, identity: UserIdentity, access_token: str, ttl: Optional[int] = None) -> str:
        ttl_seconds = int(ttl or self._ttl)
        token = random_token(32)
        payload = {
            "user_id": identity.id,
            "username": identity.username,
            "avatar": identity.avatar,
            "access_token": access_token,
            "expires_at": self._clock() + ttl_seconds,
        }
        raw = json.dumps(payload, separators=(",", ":"), sort_keys=True)
        try:
            self._client.set(_key(token), raw, ex=ttl_seconds)
        except redis.RedisError as e:
            logger.error("Session store write failed: %s", type(e).__name__)
            raise StorageError() from e
        logger.info("Created session for user %s (ttl=%ds)", identity.id, ttl_seconds)
        return token

    def resolve_session(self, token: str | None) -> Optional[SessionRecord]:
        if not token:
            return None
        try:
            raw = self._client.get(_key(token))
        except redis.RedisError as e:
            logger.error("Session store read failed: %s", type(e).__name__)
            raise StorageError() from e
        if raw is None:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict):
                raise ValueError("session payload is not an object")
            record = SessionRecord(
                session_token=token,
                user_id=str(data["user_id"]),
                username=str(data["username"]),
                avatar=str(data["avatar"]) if data.get("avatar") else None,
                provider_access_token=str(data.get("access_token") or ""),
                expires_at=float(data["expires_at"]),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding undecodable session record")
            return None
        if record.expires_at <= self._clock():
            return None
        return record

    def delete_session(self, token: str | None) -> None:
        if not token:
            return
        try:
            self._client.delete(_key(token))
        except redis.RedisError as e:
            logger.error("Session store delete failed: %s", type(e).__name__)
            raise StorageError() from e

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("Redis health check failed: %s", type(e).__name__)
            return False

    def close(self) -> None:
        self._client.close()
        # A client built around an existing pool does not own it; Redis.close() leaves it connected.
        self._client.connection_pool.disconnect()
