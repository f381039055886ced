from __future__ import annotations

from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from tzapi.auth.provider import build_authorization_url, exchange_code, fetch_profile
from tzapi.config import load_config
from tzapi.errors import NetworkError, ProviderError


def _resp(status: int = 200, payload=None, json_error: bool = False) -> MagicMock:
    r = MagicMock()
    r.status_code = status
    if json_error:
        r.json.side_effect = ValueError("not json")
    else:
        r.json.return_value = payload
    return r


def test_build_authorization_url() -> None:
    cfg = load_config().provider
    url = build_authorization_url(cfg, state="s123")
    qs = parse_qs(urlsplit(url).query)
    assert url.startswith("https://discord.com/oauth2/authorize?")
    assert qs == {
        "client_id": ["test-client-id"],
        "redirect_uri": ["https://tz.example.com/auth/discord/callback"],
        "response_type": ["code"],
        "scope": ["identify"],
        "state": ["s123"],
    }


def test_build_authorization_url_redirect_override() -> None:
    cfg = load_config().provider
    url = build_authorization_url(cfg, state="s", redirect_uri="https://other.example.com/cb")
    assert parse_qs(urlsplit(url).query)["redirect_uri"] == ["https://other.example.com/cb"]


def test_exchange_code_posts_form_with_timeout() -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.post") as post:
        post.return_value = _resp(payload={"access_token": "at-1", "token_type": "Bearer"})
        assert exchange_code(cfg, code="abc") == "at-1"

    args, kwargs = post.call_args
    assert args[0] == "https://discord.com/api/oauth2/token"
    assert kwargs["data"]["grant_type"] == "authorization_code"
    assert kwargs["data"]["code"] == "abc"
    assert kwargs["data"]["client_secret"] == "test-client-secret"
    assert kwargs["timeout"] == cfg.timeout_seconds


@pytest.mark.parametrize(
    "response",
    [
        _resp(status=400, payload={"error": "invalid_grant"}),
        _resp(json_error=True),
        _resp(payload=["not", "an", "object"]),
        _resp(payload={"token_type": "Bearer"}),
    ],
)
def test_exchange_code_provider_errors(response) -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.post", return_value=response):
        with pytest.raises(ProviderError):
            exchange_code(cfg, code="abc")


@pytest.mark.parametrize("exc", [requests.Timeout("slow"), requests.ConnectionError("refused")])
def test_exchange_code_transport_errors(exc) -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.post", side_effect=exc):
        with pytest.raises(NetworkError):
            exchange_code(cfg, code="abc")


def test_fetch_profile_narrows_payload() -> None:
    cfg = load_config().provider
    payload = {
        "id": "80351110224678912",
        "username": "nelly",
        "discriminator": "0",
        "avatar": "8342729096ea3675442027381ff50dfe",
        "email": "nelly@example.com",
        "locale": "en-US",
    }
    with patch("tzapi.auth.provider.requests.get", return_value=_resp(payload=payload)) as get:
        identity = fetch_profile(cfg, access_token="at-1")

    assert identity.id == "80351110224678912"
    assert identity.username == "nelly"
    assert identity.avatar == (
        "https://cdn.discordapp.com/avatars/80351110224678912/8342729096ea3675442027381ff50dfe.png"
    )
    assert not hasattr(identity, "email")
    assert get.call_args[1]["headers"]["Authorization"] == "Bearer at-1"
    assert get.call_args[1]["timeout"] == cfg.timeout_seconds


def test_fetch_profile_without_avatar_and_numeric_id() -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.get", return_value=_resp(payload={"id": 7, "username": "z"})):
        identity = fetch_profile(cfg, access_token="at")
    assert identity.id == "7"
    assert identity.avatar is None


@pytest.mark.parametrize("payload", [{"username": "no-id"}, {"id": "1"}, {"id": "", "username": "x"}])
def test_fetch_profile_rejects_malformed_payload(payload) -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.get", return_value=_resp(payload=payload)):
        with pytest.raises(ProviderError):
            fetch_profile(cfg, access_token="at")


def test_fetch_profile_unauthorized_token() -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.get", return_value=_resp(status=401, payload={"message": "401"})):
        with pytest.raises(ProviderError):
            fetch_profile(cfg, access_token="expired")


def test_fetch_profile_timeout() -> None:
    cfg = load_config().provider
    with patch("tzapi.auth.provider.requests.get", side_effect=requests.ReadTimeout("slow")):
        with pytest.raises(NetworkError):
            fetch_profile(cfg, access_token="at")
