"""
FastAPI dependencies for authentication.

Provides ``get_current_identity``, ``get_optional_identity``,
``require_permissions`` and ``enforce_rate_limit``, used across all
protected routes.
"""

from __future__ import annotations

import math
from typing import Callable, Optional

from fastapi import Depends, Request, Response

from api.dependencies import Services, get_services
from auth.errors import RateLimited
from auth.jwt import SessionTokenError
from auth.models import IdentityContext


def _session_token(request: Request, services: Services) -> Optional[str]:
    return services.gate.extract_token(request.cookies, request.headers.get("Authorization"))


async def get_current_identity(
    request: Request,
    services: Services = Depends(get_services),
) -> IdentityContext:
    """
    Authenticate the request and return the caller's identity.

    Raises an ``AuthError`` (rendered by the app's exception handler)
    when any gate step fails.
    """
    identity = await services.gate.authenticate(_session_token(request, services))
    request.state.identity = identity
    return identity


async def get_optional_identity(
    request: Request,
    services: Services = Depends(get_services),
) -> Optional[IdentityContext]:
    """Like ``get_current_identity`` but returns None for anonymous callers."""
    identity = await services.gate.authenticate_optional(_session_token(request, services))
    request.state.identity = identity
    return identity


def require_permissions(*scopes: str) -> Callable:
    """Dependency factory: authenticated caller whose credential grants ``scopes``."""

    async def _checker(
        identity: IdentityContext = Depends(get_current_identity),
        services: Services = Depends(get_services),
    ) -> IdentityContext:
        await services.gate.authorize(identity, scopes)
        return identity

    return _checker


def _rate_limit_key(request: Request, services: Services) -> str:
    """Identity when a valid session token is presented, client IP otherwise."""
    token = _session_token(request, services)
    if token:
        try:
            return f"identity:{services.codec.verify(token).identity_id}"
        except SessionTokenError:
            pass
    host = request.client.host if request.client else "unknown"
    return f"ip:{host}"


async def enforce_rate_limit(
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> None:
    """Reject with 429 once the caller exhausts its window; sets quota headers."""
    decision = services.rate_limiter.check(_rate_limit_key(request, services))
    if not decision.allowed:
        raise RateLimited(retry_after=decision.retry_after, limit=decision.limit)

    response.headers["X-RateLimit-Limit"] = str(decision.limit)
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    response.headers["X-RateLimit-Reset"] = str(math.ceil(decision.reset_after))
