from __future__ import annotations

from typing import Optional, Tuple

from fastapi import Request

from tzapi.auth.models import SessionRecord, UserIdentity
from tzapi.auth.session import SessionStore, session_cookie_name
from tzapi.config import SessionConfig
from tzapi.errors import Unauthorized


def authenticate_request(request: Request, store: SessionStore, cfg: SessionConfig) -> Tuple[Optional[SessionRecord], bool]:
    """
    Resolve the request's session cookie.

    Returns (record, stale): `record` is None for anonymous requests, and `stale` is
    True when a cookie was sent but no live session backs it, so the caller should
    clear it. Raises StorageError if the session store cannot be reached.
    """
    token = (request.cookies.get(session_cookie_name(cfg)) or "").strip()
    if not token:
        return None, False
    record = store.resolve_session(token)
    if record is None:
        return None, True
    return record, False


def optional_session(request: Request) -> Optional[SessionRecord]:
    return getattr(request.state, "session", None)


def require_session(request: Request) -> SessionRecord:
    record = optional_session(request)
    if record is None:
        # The cookie could not be checked at all: report the store fault, not a logout.
        err = getattr(request.state, "session_error", None)
        if err is not None:
            raise err
        # No `WWW-Authenticate`: browsers would pop a basic-auth dialog.
        raise Unauthorized()
    return record


def require_identity(request: Request) -> UserIdentity:
    return require_session(request).identity
