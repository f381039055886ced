"""
Error taxonomy shared by the stores, the identity provider client and the HTTP layer.

Each error carries the HTTP status it maps to and a machine-readable `code`. The
message of provider and storage errors stays generic; details go to the log.
"""

from __future__ import annotations

from typing import Any, Dict


class ConfigError(Exception):
    """Startup configuration is missing or invalid."""


class TzApiError(Exception):
    status_code = 500
    code = "internal_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}


class ValidationError(TzApiError):
    status_code = 400
    code = "invalid_request"
    default_message = "Invalid request"


class Unauthorized(TzApiError):
    status_code = 401
    code = "unauthorized"
    default_message = "Unauthorized"


class InvalidOAuthState(Unauthorized):
    status_code = 400
    code = "invalid_state"
    default_message = "Invalid OAuth state"


class NotFound(TzApiError):
    status_code = 404
    code = "not_found"
    default_message = "Not found"


class ProviderError(TzApiError):
    status_code = 502
    code = "provider_error"
    default_message = "Identity provider error"


class NetworkError(TzApiError):
    status_code = 503
    code = "provider_unavailable"
    default_message = "Identity provider unavailable"


class StorageError(TzApiError):
    status_code = 500
    code = "storage_error"
    default_message = "Storage error"
