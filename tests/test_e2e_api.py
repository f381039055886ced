"""E2E tests against a running server backed by real Postgres and Redis.

Login needs a real identity provider, so only the public surface is covered here.
Run with: pytest -m e2e
"""

import os
import time
from typing import Generator

import pytest
import requests

BASE_URL = os.getenv("TZAPI_E2E_BASE_URL", "http://localhost:3000")

pytestmark = pytest.mark.e2e


@pytest.fixture(scope="module")
def wait_for_server() -> Generator[None, None, None]:
    """Poll /health until both stores answer (up to ~30s)."""
    deadline = time.monotonic() + 30
    while True:
        try:
            if requests.get(f"{BASE_URL}/health", timeout=2).status_code == 200:
                break
        except requests.RequestException:
            pass
        if time.monotonic() > deadline:
            pytest.fail(f"tzapi at {BASE_URL} did not become healthy in time")
        time.sleep(1)
    yield


def test_health(wait_for_server):
    r = requests.get(f"{BASE_URL}/health", timeout=5)
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "healthy"
    assert body["database"] is True
    assert body["redis"] is True


def test_get_unknown_user(wait_for_server):
    r = requests.get(f"{BASE_URL}/get", params={"id": "e2e-no-such-user"}, timeout=5)
    assert r.status_code == 404


def test_mutations_require_session(wait_for_server):
    assert requests.post(f"{BASE_URL}/set", data={"timezone": "UTC"}, timeout=5).status_code == 401
    assert requests.delete(f"{BASE_URL}/delete", timeout=5).status_code == 401
    assert requests.get(f"{BASE_URL}/me", timeout=5).status_code == 401


def test_bogus_session_cookie_is_cleared(wait_for_server):
    r = requests.get(f"{BASE_URL}/me", cookies={"tz_session": "forged", "__Host-tz_session": "forged"}, timeout=5)
    assert r.status_code == 401
    assert "Max-Age=0" in r.headers.get("set-cookie", "")


def test_login_redirects_to_provider(wait_for_server):
    r = requests.get(f"{BASE_URL}/auth/discord", allow_redirects=False, timeout=5)
    assert r.status_code == 302
    assert "state=" in r.headers["location"]
    assert "tz_oauth_pending" in r.headers.get("set-cookie", "")
