"""
User-facing auth errors.

Every rejection carries a stable ``code`` plus structured ``details`` so a
client can decide between re-authenticating, asking for more scopes, or
backing off without parsing messages.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from fastapi import status


class AuthError(Exception):
    """Base class for auth-layer rejections."""

    code = "AUTH_ERROR"
    status_code = status.HTTP_401_UNAUTHORIZED
    requires_auth = True
    clear_cookie = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": False,
            "requires_auth": self.requires_auth,
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
            },
        }

    def headers(self) -> Dict[str, str]:
        return {}


class AuthRequired(AuthError):
    code = "AUTH_REQUIRED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class TokenInvalid(AuthError):
    code = "TOKEN_INVALID"
    clear_cookie = True

    def __init__(self, message: str = "Invalid or expired session token"):
        super().__init__(message)


class CredentialsMissing(AuthError):
    code = "CREDENTIALS_MISSING"
    clear_cookie = True

    def __init__(self, message: str = "Provider session expired, reconnection required"):
        super().__init__(message, {"needs_reconnection": True})


class CredentialsExpired(AuthError):
    code = "CREDENTIALS_EXPIRED"
    clear_cookie = True

    def __init__(
        self,
        message: str = "Provider token expired and could not be refreshed",
        *,
        retryable: bool = False,
    ):
        super().__init__(message, {"needs_reconnection": True, "retryable": retryable})


class PermissionDenied(AuthError):
    code = "PERMISSION_DENIED"
    status_code = status.HTTP_403_FORBIDDEN
    requires_auth = False

    def __init__(self, missing: Iterable[str], required: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(
            "Insufficient permissions",
            {"missing": self.missing, "required": sorted(required)},
        )


class RateLimited(AuthError):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    requires_auth = False

    def __init__(self, retry_after: int, limit: int):
        self.retry_after = retry_after
        super().__init__("Too many requests", {"retry_after": retry_after, "limit": limit})

    def headers(self) -> Dict[str, str]:
        return {"Retry-After": str(self.retry_after)}


class OAuthCallbackFailed(AuthError):
    """Login could not be completed; ``reason`` is a stable slug."""

    code = "OAUTH_CALLBACK_FAILED"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, reason: str, message: str = "OAuth login failed"):
        self.reason = reason
        super().__init__(message, {"reason": reason})
