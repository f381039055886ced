from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from tzapi.auth.models import UserIdentity
from tzapi.config import ProviderConfig
from tzapi.errors import NetworkError, ProviderError

logger = logging.getLogger(__name__)


class ProviderProfile(BaseModel):
    """
    Shape of the provider's `/users/@me` payload that we rely on.

    Everything else in the payload is ignored; nothing raw leaves this module.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    username: str = Field(min_length=1)
    global_name: Optional[str] = None
    avatar: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_str(cls, v: Any) -> Any:
        # Snowflake ids are strings on the wire but some mocks/providers send ints.
        return str(v) if isinstance(v, int) else v


def build_authorization_url(cfg: ProviderConfig, *, state: str, redirect_uri: Optional[str] = None) -> str:
    """
    Build the provider's authorization URL for the authorization-code flow.

    The caller owns `state` and must persist it for the callback to verify.
    """
    params = {
        "client_id": cfg.client_id,
        "redirect_uri": redirect_uri or cfg.redirect_uri,
        "response_type": "code",
        "scope": cfg.scope,
        "state": state,
    }
    sep = "&" if "?" in cfg.authorize_url else "?"
    return f"{cfg.authorize_url}{sep}{urlencode(params)}"


def _read_json(r: requests.Response, *, what: str) -> Dict[str, Any]:
    if r.status_code >= 400:
        # Avoid leaking sensitive info; include minimal context.
        logger.warning("Identity provider %s failed (status=%d)", what, r.status_code)
        raise ProviderError()
    try:
        data = r.json()
    except ValueError:
        logger.warning("Identity provider %s returned non-JSON body", what)
        raise ProviderError() from None
    if not isinstance(data, dict):
        logger.warning("Identity provider %s returned unexpected payload type %s", what, type(data).__name__)
        raise ProviderError()
    return data


def exchange_code(cfg: ProviderConfig, *, code: str, redirect_uri: Optional[str] = None) -> str:
    """Exchange an authorization code for the provider's access token."""
    payload = {
        "client_id": cfg.client_id,
        "client_secret": cfg.client_secret,
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": redirect_uri or cfg.redirect_uri,
    }
    try:
        r = requests.post(
            cfg.token_url,
            data=payload,
            headers={"Accept": "application/json"},
            timeout=cfg.timeout_seconds,
        )
    except requests.RequestException as e:
        logger.warning("Token exchange transport failure: %s", type(e).__name__)
        raise NetworkError() from e

    data = _read_json(r, what="token exchange")
    access_token = str(data.get("access_token") or "").strip()
    if not access_token:
        logger.warning("Token exchange response missing access_token")
        raise ProviderError()
    return access_token


def _avatar_url(cfg: ProviderConfig, profile: ProviderProfile) -> Optional[str]:
    if not profile.avatar:
        return None
    if profile.avatar.startswith(("http://", "https://")):
        return profile.avatar
    ext = "gif" if profile.avatar.startswith("a_") else "png"
    return f"{cfg.avatar_base_url.rstrip('/')}/{profile.id}/{profile.avatar}.{ext}"


def fetch_profile(cfg: ProviderConfig, *, access_token: str) -> UserIdentity:
    """Fetch the authenticated user's profile and narrow it to a UserIdentity."""
    try:
        r = requests.get(
            cfg.profile_url,
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            timeout=cfg.timeout_seconds,
        )
    except requests.RequestException as e:
        logger.warning("Profile fetch transport failure: %s", type(e).__name__)
        raise NetworkError() from e

    data = _read_json(r, what="profile fetch")
    try:
        profile = ProviderProfile.model_validate(data)
    except PydanticValidationError as e:
        logger.warning("Profile payload failed validation: %d error(s)", e.error_count())
        raise ProviderError() from None

    return UserIdentity(id=profile.id, username=profile.username, avatar=_avatar_url(cfg, profile))
