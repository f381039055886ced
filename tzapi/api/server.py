"""
Timezone API server.

Lets a user log in with the configured OAuth2 identity provider and store one IANA
timezone against their provider user id. Anyone can look a user's timezone up.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Form, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from tzapi.auth.deps import authenticate_request, optional_session, require_identity, require_session
from tzapi.auth.models import UserIdentity
from tzapi.auth.provider import build_authorization_url, exchange_code, fetch_profile
from tzapi.auth.session import (
    SessionStore,
    clear_session_cookie_kwargs,
    session_cookie_kwargs,
    session_cookie_name,
)
from tzapi.auth.state import (
    PENDING_LOGIN_COOKIE,
    PendingLogin,
    clear_pending_login_cookie_kwargs,
    decode_pending_login,
    encode_pending_login,
    pending_login_cookie_kwargs,
    state_matches,
)
from tzapi.auth.util import random_token, sanitize_redirect
from tzapi.config import AppConfig, load_config, load_cors_origins
from tzapi.errors import InvalidOAuthState, NotFound, TzApiError, ValidationError
from tzapi.storage.preferences import PreferenceStore
from tzapi.timezones import validate_timezone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Services:
    config: AppConfig
    sessions: SessionStore
    preferences: PreferenceStore


_services: Optional[Services] = None
_services_lock = threading.Lock()


def get_services() -> Services:
    """Build the stores on first use; one set of pools per process."""
    global _services
    if _services is None:
        with _services_lock:
            if _services is None:
                from tzapi.storage.pools import create_db_pool, create_redis_client

                cfg = load_config()
                _services = Services(
                    config=cfg,
                    sessions=SessionStore(create_redis_client(cfg.redis), ttl_seconds=cfg.session.ttl_seconds),
                    preferences=PreferenceStore(create_db_pool(cfg.database)),
                )
    return _services


app = FastAPI(title="Timezone API")


def _error_response(err: TzApiError) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


@app.exception_handler(TzApiError)
async def _handle_api_error(request: Request, exc: TzApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.code)
    return _error_response(exc)


@app.exception_handler(Exception)
async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error_response(TzApiError())


@app.on_event("startup")
def _startup_load_services() -> None:
    # Fail fast on bad configuration instead of on the first request.
    services = get_services()
    from tzapi.storage.migrate import maybe_auto_migrate

    did_attempt, msg = maybe_auto_migrate(services.config.database)
    if did_attempt:
        logger.info("DB migrations: %s", msg)
    logger.info(
        "Auth provider: %s (session_ttl=%ds, list_requires_auth=%s)",
        services.config.provider.name,
        services.config.session.ttl_seconds,
        services.config.list_requires_auth,
    )


@app.on_event("shutdown")
def _shutdown_close_pools() -> None:
    global _services
    services = _services
    if services is None:
        return
    _services = None
    try:
        services.preferences.close()
        services.sessions.close()
    except Exception as e:
        logger.warning("Error while closing pools: %s", str(e))


def _is_sessionless_path(path: str) -> bool:
    # Health must answer 503 (not fail in middleware) when Redis is down.
    return path == "/health"


def _sets_cookie(response, name: str) -> bool:
    prefix = f"{name}=".lower()
    return any(v.lower().startswith(prefix) for v in response.headers.getlist("set-cookie"))


@app.middleware("http")
async def session_middleware(request: Request, call_next):
    """Resolve the session cookie once per request and attach it to request.state."""
    start_time = time.time()
    request.state.session = None
    request.state.identity = None
    request.state.session_error = None
    path = request.url.path or ""
    stale = False
    cookie_name = None

    if request.method != "OPTIONS" and not _is_sessionless_path(path):
        services = get_services()
        cookie_name = session_cookie_name(services.config.session)
        try:
            record, stale = await run_in_threadpool(
                authenticate_request, request, services.sessions, services.config.session
            )
        except TzApiError as e:
            # Public routes carry on anonymously; require_session re-raises this.
            logger.error("%s %s - session lookup failed: %s", request.method, path, e.code)
            request.state.session_error = e
            record = None
        if record is not None:
            request.state.session = record
            request.state.identity = record.identity

    try:
        response = await call_next(request)
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, path, process_time, str(e))
        raise

    if stale and cookie_name and not _sets_cookie(response, cookie_name):
        # Expired/unknown session: downgrade to anonymous and drop the cookie.
        response.set_cookie(**clear_session_cookie_kwargs(get_services().config.session))

    process_time = time.time() - start_time
    logger.debug("%s %s - %d (%.3fs)", request.method, path, response.status_code, process_time)
    return response


_cors_origins = load_cors_origins()
if _cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[] if "*" in _cors_origins else _cors_origins,
        # `*` cannot be combined with credentials; reflect the caller's origin instead.
        allow_origin_regex=".*" if "*" in _cors_origins else None,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )


def _check_provider(cfg: AppConfig, provider: str) -> None:
    if (provider or "").strip().lower() != cfg.provider.name:
        raise NotFound("Unknown identity provider", code="unknown_provider")


def _record_dict(record) -> Dict[str, Any]:
    body = record.to_public_dict()
    body["created_at"] = record.created_at.isoformat() if record.created_at else None
    body["updated_at"] = record.updated_at.isoformat() if record.updated_at else None
    return body


@app.get("/health")
def health() -> JSONResponse:
    services = get_services()
    db_healthy = services.preferences.ping()
    redis_healthy = services.sessions.ping()
    healthy = db_healthy and redis_healthy
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "database": db_healthy,
            "redis": redis_healthy,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


@app.get("/get")
def get_timezone(user_id: Optional[str] = Query(None, alias="id")) -> Dict[str, Any]:
    uid = (user_id or "").strip()
    if not uid:
        raise ValidationError("Query parameter 'id' is required", code="id_required")
    record = get_services().preferences.get(uid)
    if record is None:
        raise NotFound("User not found")
    return record.to_public_dict()


@app.post("/set")
def set_timezone(
    tz: Optional[str] = Form(None, alias="timezone"),
    identity: UserIdentity = Depends(require_identity),
) -> Dict[str, Any]:
    tz_name = validate_timezone(tz)
    record = get_services().preferences.upsert(identity.id, identity.username, tz_name)
    return _record_dict(record)


@app.delete("/delete")
def delete_timezone(identity: UserIdentity = Depends(require_identity)) -> Dict[str, Any]:
    get_services().preferences.delete(identity.id)
    return {"message": "Timezone deleted"}


@app.get("/list")
def list_timezones(request: Request) -> Dict[str, Any]:
    services = get_services()
    if services.config.list_requires_auth:
        require_session(request)
    return {r.user_id: {"username": r.username, "timezone": r.timezone} for r in services.preferences.list_all()}


@app.get("/me")
def me(identity: UserIdentity = Depends(require_identity)) -> Dict[str, Any]:
    record = get_services().preferences.get(identity.id)
    return {"user": identity.to_public_dict(), "timezone": record.timezone if record else None}


@app.post("/auth/logout")
def auth_logout(request: Request) -> JSONResponse:
    services = get_services()
    if request.state.session_error is not None:
        # Clearing only the cookie would leave the session live in the store.
        raise request.state.session_error
    record = optional_session(request)
    if record is not None:
        services.sessions.delete_session(record.session_token)
    resp = JSONResponse(content={"message": "Logged out"})
    resp.set_cookie(**clear_session_cookie_kwargs(services.config.session))
    return resp


@app.get("/auth/{provider}")
def auth_start(provider: str, redirect: Optional[str] = Query(None)) -> RedirectResponse:
    """Start the OAuth2 authorization-code flow."""
    cfg = get_services().config
    _check_provider(cfg, provider)

    safe_redirect = sanitize_redirect(
        redirect,
        default=cfg.session.default_redirect,
        allowed_origins=cfg.session.allowed_redirect_origins,
    )
    state = random_token(32)
    pending = PendingLogin(state=state, redirect=safe_redirect, provider=cfg.provider.name)

    resp = RedirectResponse(url=build_authorization_url(cfg.provider, state=state), status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**pending_login_cookie_kwargs(cfg.session, encode_pending_login(cfg.session, pending)))
    return resp


@app.get("/auth/{provider}/callback")
def auth_callback(
    request: Request,
    provider: str,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
) -> RedirectResponse:
    """Handle the provider redirect: verify state, exchange the code, open a session."""
    services = get_services()
    cfg = services.config
    _check_provider(cfg, provider)

    pending = decode_pending_login(cfg.session, request.cookies.get(PENDING_LOGIN_COOKIE))
    # CSRF check comes before anything talks to the provider.
    if not state_matches(pending, state, provider=cfg.provider.name):
        logger.warning("Rejected OAuth callback: state mismatch or missing pending login")
        raise InvalidOAuthState()
    if error:
        raise ValidationError("Authorization was not granted", code="authorization_denied")
    if not (code or "").strip():
        raise ValidationError("Missing authorization code", code="code_required")

    access_token = exchange_code(cfg.provider, code=code.strip())
    identity = fetch_profile(cfg.provider, access_token=access_token)

    # One session per browser: retire the one this cookie pointed at, if any.
    previous = optional_session(request)
    if previous is not None:
        services.sessions.delete_session(previous.session_token)
    token = services.sessions.create_session(identity, access_token)
    logger.info("User %s logged in via %s", identity.id, cfg.provider.name)

    target = sanitize_redirect(
        pending.redirect,
        default=cfg.session.default_redirect,
        allowed_origins=cfg.session.allowed_redirect_origins,
    )
    resp = RedirectResponse(url=target, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**session_cookie_kwargs(cfg.session, token))
    resp.set_cookie(**clear_pending_login_cookie_kwargs(cfg.session))
    return resp


def run(host: str = "0.0.0.0", port: int = 3000, log_level: str = "INFO") -> None:
    import uvicorn

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logging.getLogger().setLevel(level)
    logging.getLogger("tzapi").setLevel(level)

    # uvicorn has no NOTSET and spells the names in lower case.
    uvicorn_level = logging.getLevelName(level).lower()
    if uvicorn_level not in ("critical", "error", "warning", "info", "debug"):
        uvicorn_level = "info"

    logger.info("Starting timezone API on %s:%d (log_level=%s)", host, port, uvicorn_level)
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_level)
