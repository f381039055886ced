from __future__ import annotations

import hmac
import json
from dataclasses import asdict, dataclass
from typing import Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from tzapi.config import SessionConfig

PENDING_LOGIN_COOKIE = "tz_oauth_pending"
PENDING_LOGIN_SALT = "tzapi-oauth-pending-v1"
PENDING_LOGIN_TTL_SECONDS = 10 * 60
_PENDING_LOGIN_PATH = "/auth"


@dataclass(frozen=True)
class PendingLogin:
    """One in-flight login: the anti-CSRF state and where to land afterwards."""

    state: str
    redirect: str
    provider: str


def _serializer(cfg: SessionConfig) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=cfg.secret, salt=PENDING_LOGIN_SALT)


def encode_pending_login(cfg: SessionConfig, pending: PendingLogin) -> str:
    raw = json.dumps(asdict(pending), separators=(",", ":"), sort_keys=True)
    return _serializer(cfg).dumps(raw)


def decode_pending_login(cfg: SessionConfig, value: str | None) -> Optional[PendingLogin]:
    if not value:
        return None
    try:
        raw = _serializer(cfg).loads(value, max_age=PENDING_LOGIN_TTL_SECONDS)
        data = json.loads(raw)
        if not isinstance(data, dict):
            return None
        state = str(data.get("state") or "").strip()
        if not state:
            return None
        return PendingLogin(
            state=state,
            redirect=str(data.get("redirect") or "").strip(),
            provider=str(data.get("provider") or "").strip(),
        )
    except (BadSignature, BadTimeSignature, ValueError):
        return None


def state_matches(pending: Optional[PendingLogin], state: str | None, *, provider: str) -> bool:
    if pending is None or pending.provider != provider:
        return False
    return hmac.compare_digest(pending.state.encode("utf-8"), (state or "").strip().encode("utf-8"))


def pending_login_cookie_kwargs(cfg: SessionConfig, value: str) -> dict:
    return {
        "key": PENDING_LOGIN_COOKIE,
        "value": value,
        "max_age": PENDING_LOGIN_TTL_SECONDS,
        "httponly": True,
        "secure": cfg.cookie_secure,
        # The callback is a top-level navigation from the provider; `strict` would drop it.
        "samesite": "lax",
        "path": _PENDING_LOGIN_PATH,
    }


def clear_pending_login_cookie_kwargs(cfg: SessionConfig) -> dict:
    kwargs = pending_login_cookie_kwargs(cfg, "")
    kwargs["max_age"] = 0
    return kwargs
