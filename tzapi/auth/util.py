from __future__ import annotations

import base64
import os
from typing import Iterable
from urllib.parse import urlsplit


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def _origin(url: str) -> str:
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}".lower()


def sanitize_redirect(target: str | None, *, default: str, allowed_origins: Iterable[str] = ()) -> str:
    """
    Prevent open-redirects after login.

    Relative paths like `/settings` are always allowed. Absolute URLs are allowed only
    when their origin is listed in `allowed_origins` (e.g. the site embedding the widget).
    """
    p = (target or "").strip().replace("\r", "").replace("\n", "")
    if not p:
        return default
    if p.startswith("/"):
        # Disallow scheme-relative: `//evil.com`, and `/\evil.com` which some browsers normalize.
        if p.startswith("//") or p.startswith("/\\"):
            return default
        return p
    if p.startswith(("http://", "https://")):
        allowed = {o.lower().rstrip("/") for o in allowed_origins}
        if _origin(p) in allowed:
            return p
    return default
