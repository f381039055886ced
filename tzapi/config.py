from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional

from tzapi.errors import ConfigError

DISCORD_AUTHORIZE_URL = "https://discord.com/oauth2/authorize"
DISCORD_TOKEN_URL = "https://discord.com/api/oauth2/token"
DISCORD_PROFILE_URL = "https://discord.com/api/users/@me"
DISCORD_AVATAR_BASE_URL = "https://cdn.discordapp.com/avatars"


@dataclass(frozen=True)
class ServerConfig:
    host: str
    port: int


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    max_connections: int
    connect_timeout_seconds: int
    auto_migrate: bool


@dataclass(frozen=True)
class RedisConfig:
    url: str
    pool_size: int
    connect_timeout_seconds: int


@dataclass(frozen=True)
class ProviderConfig:
    name: str  # path segment in /auth/<name>
    client_id: str
    client_secret: str
    redirect_uri: str
    scope: str
    authorize_url: str
    token_url: str
    profile_url: str
    avatar_base_url: str
    timeout_seconds: int


@dataclass(frozen=True)
class SessionConfig:
    secret: str  # signs the pending-login cookie
    ttl_seconds: int
    cookie_secure: bool
    cookie_samesite: str  # lax|strict
    default_redirect: str
    allowed_redirect_origins: List[str]


@dataclass(frozen=True)
class AppConfig:
    server: ServerConfig
    database: DatabaseConfig
    redis: RedisConfig
    provider: ProviderConfig
    session: SessionConfig
    cors_allowed_origins: List[str]
    list_requires_auth: bool
    log_level: str


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _env_or(name: str, default: str) -> str:
    return _env_str(name) or default


def _env_required(name: str) -> str:
    value = _env_str(name)
    if value is None:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: Optional[int] = None) -> int:
    raw = _env_str(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"Invalid value for {name}: {raw!r} - must be an integer") from None
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ConfigError(f"Invalid value for {name}: {raw!r} - must be {bounds}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = (_env_str(name) or "").lower()
    if not raw:
        return default
    if raw in ("1", "true", "yes", "y", "on"):
        return True
    if raw in ("0", "false", "no", "n", "off"):
        return False
    raise ConfigError(f"Invalid value for {name}: {raw!r} - must be a boolean")


def _parse_csv(value: Optional[str]) -> List[str]:
    items = [x.strip().rstrip("/") for x in (value or "").split(",")]
    return [x for x in items if x]


def _load_server() -> ServerConfig:
    return ServerConfig(
        host=_env_or("HOST", "0.0.0.0"),
        port=_env_int("PORT", 3000, maximum=65535),
    )


def _load_database() -> DatabaseConfig:
    url = _env_required("DATABASE_URL")
    if not url.startswith(("postgres://", "postgresql://")):
        # Never echo the DSN; it usually carries a password.
        raise ConfigError("Invalid value for DATABASE_URL: ***hidden*** - must be a PostgreSQL connection string")
    return DatabaseConfig(
        url=url,
        max_connections=_env_int("DB_MAX_CONNECTIONS", 10),
        connect_timeout_seconds=_env_int("DB_CONNECT_TIMEOUT", 30),
        auto_migrate=_env_bool("DB_AUTO_MIGRATE", True),
    )


def _load_redis() -> RedisConfig:
    url = _env_required("REDIS_URL")
    if not url.startswith(("redis://", "rediss://")):
        raise ConfigError("Invalid value for REDIS_URL: ***hidden*** - must be a Redis connection string")
    return RedisConfig(
        url=url,
        pool_size=_env_int("REDIS_POOL_SIZE", 5),
        connect_timeout_seconds=_env_int("REDIS_CONNECT_TIMEOUT", 10),
    )


def _load_provider() -> ProviderConfig:
    redirect_uri = _env_required("REDIRECT_URI")
    if not redirect_uri.startswith(("http://", "https://")):
        raise ConfigError(f"Invalid value for REDIRECT_URI: {redirect_uri!r} - must start with http:// or https://")
    return ProviderConfig(
        name=_env_or("OAUTH_PROVIDER", "discord").lower(),
        client_id=_env_required("CLIENT_ID"),
        client_secret=_env_required("CLIENT_SECRET"),
        redirect_uri=redirect_uri,
        scope=_env_or("OAUTH_SCOPE", "identify"),
        authorize_url=_env_or("OAUTH_AUTHORIZE_URL", DISCORD_AUTHORIZE_URL),
        token_url=_env_or("OAUTH_TOKEN_URL", DISCORD_TOKEN_URL),
        profile_url=_env_or("OAUTH_PROFILE_URL", DISCORD_PROFILE_URL),
        avatar_base_url=_env_or("OAUTH_AVATAR_BASE_URL", DISCORD_AVATAR_BASE_URL),
        timeout_seconds=_env_int("OAUTH_TIMEOUT_SECONDS", 10),
    )


def _load_session() -> SessionConfig:
    secret = _env_required("SESSION_SECRET")
    if len(secret) < 16:
        raise ConfigError("Invalid value for SESSION_SECRET: must be at least 16 characters")

    samesite = _env_or("COOKIE_SAMESITE", "lax").lower()
    if samesite not in ("lax", "strict"):
        raise ConfigError(f"Invalid value for COOKIE_SAMESITE: {samesite!r} - must be 'lax' or 'strict'")

    default_redirect = _env_or("DEFAULT_REDIRECT", "/")
    if not default_redirect.startswith(("/", "http://", "https://")):
        raise ConfigError(f"Invalid value for DEFAULT_REDIRECT: {default_redirect!r} - must be a path or http(s) URL")

    return SessionConfig(
        secret=secret,
        ttl_seconds=_env_int("SESSION_TTL_SECONDS", 3600, minimum=60),
        cookie_secure=_env_bool("COOKIE_SECURE", True),
        cookie_samesite=samesite,
        default_redirect=default_redirect,
        allowed_redirect_origins=_parse_csv(_env_str("ALLOWED_REDIRECT_ORIGINS")),
    )


def load_cors_origins() -> List[str]:
    """CORS origins only; read at import time by the server, before the full config."""
    return _parse_csv(_env_str("CORS_ALLOWED_ORIGINS"))


@lru_cache(maxsize=1)
def load_config() -> AppConfig:
    """
    Load and validate service configuration from environment variables.

    Raises ConfigError naming the offending variable when a required value is
    missing or malformed, so the process can refuse to start.
    """
    return AppConfig(
        server=_load_server(),
        database=_load_database(),
        redis=_load_redis(),
        provider=_load_provider(),
        session=_load_session(),
        cors_allowed_origins=load_cors_origins(),
        list_requires_auth=_env_bool("LIST_REQUIRES_AUTH", False),
        log_level=_env_or("LOG_LEVEL", "info").upper(),
    )
