"""
Auth API routes — OAuth login, current identity, session check, logout,
token stats.

Route prefix: /api/v1/auth
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import secrets
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from api.dependencies import Services, get_services
from auth.dependencies import enforce_rate_limit, get_current_identity, get_optional_identity
from auth.errors import OAuthCallbackFailed
from auth.models import ExternalIdentity, IdentityContext
from config.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"], dependencies=[Depends(enforce_rate_limit)])


# ── Cookie helpers ─────────────────────────────────────────────────────


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    """Deliver a session token as an HttpOnly cookie."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
        domain=settings.session_cookie_domain,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        domain=settings.session_cookie_domain,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


# ── OAuth state (CSRF protection) ──────────────────────────────────────

_STATE_COOKIE = "oauth_state"


def _state_signature(raw: bytes, settings: Settings) -> str:
    return hmac.new(settings.session_secret.encode(), raw, hashlib.sha256).hexdigest()[:16]


def _create_state(settings: Settings) -> str:
    """Create an opaque state string: random nonce + expiry, signed."""
    payload = json.dumps(
        {
            "nonce": secrets.token_urlsafe(16),
            "exp": int(time.time()) + settings.oauth_state_ttl_seconds,
        }
    )
    raw = payload.encode()
    encoded = urlsafe_b64encode(raw).rstrip(b"=").decode()
    return encoded + "." + _state_signature(raw, settings)


def _verify_state(state: Optional[str], issued: Optional[str], settings: Settings) -> None:
    """
    Accept ``state`` only if it is the one handed to this browser
    (``issued``, from the state cookie), carries a valid signature and
    has not expired.
    """
    if not state or not issued or not hmac.compare_digest(state.encode(), issued.encode()):
        raise OAuthCallbackFailed("invalid_state", "OAuth state mismatch")
    try:
        encoded, sig = state.split(".", 1)
        raw = urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        if not hmac.compare_digest(sig.encode(), _state_signature(raw, settings).encode()):
            raise ValueError("bad signature")
        if json.loads(raw).get("exp", 0) < time.time():
            raise ValueError("state expired")
    except ValueError as exc:
        raise OAuthCallbackFailed("invalid_state", f"Invalid or expired OAuth state: {exc}") from exc


def _set_state_cookie(response: Response, state: str, settings: Settings) -> None:
    response.set_cookie(
        key=_STATE_COOKIE,
        value=state,
        max_age=settings.oauth_state_ttl_seconds,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )


async def _complete_login(
    services: Services,
    code: Optional[str],
    state: Optional[str],
    issued_state: Optional[str],
) -> Tuple[ExternalIdentity, str]:
    """
    Code → tokens → identity → stored credential → session token.
    Raises ``OAuthCallbackFailed``; nothing is stored on failure.
    """
    if not code:
        raise OAuthCallbackFailed("missing_code", "Authorization code missing")
    _verify_state(state, issued_state, services.settings)

    provider = services.provider
    try:
        grant = await provider.handle_callback(code)
        identity = await provider.fetch_identity(grant.access_token)
    except Exception as exc:
        logger.error("OAuth callback failed for %s: %s", provider.provider_name, exc)
        raise OAuthCallbackFailed("oauth_exchange_failed") from exc

    await services.manager.store_credentials(identity.identity_id, grant)
    token = services.codec.issue(identity)
    logger.info("Login identity=%s provider=%s", identity.identity_id, provider.provider_name)
    return identity, token


# ── Response schemas ───────────────────────────────────────────────────


class UserResponse(BaseModel):
    identity_id: str
    email: str
    display_name: str
    account_id: str


class LoginResponse(BaseModel):
    success: bool
    user: UserResponse


class CallbackRequest(BaseModel):
    code: str = ""
    state: str = ""


class SessionResponse(BaseModel):
    authenticated: bool
    user: Optional[UserResponse] = None


class TokenStatsResponse(BaseModel):
    total: int
    valid: int
    expired: int
    storage_type: str


def _user(identity: ExternalIdentity) -> UserResponse:
    return UserResponse(
        identity_id=identity.identity_id,
        email=identity.email,
        display_name=identity.display_name,
        account_id=identity.account_id,
    )


# ── Endpoints ──────────────────────────────────────────────────────────


@router.get("/zoom")
async def start_login(
    response: Response,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Issue a CSRF state and return the provider's authorization URL."""
    state = _create_state(services.settings)
    _set_state_cookie(response, state, services.settings)
    return {
        "success": True,
        "auth_url": services.provider.get_auth_url(state),
        "state": state,
    }


@router.get("/callback")
async def oauth_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> Response:
    """
    Browser redirect target after consent.

    With ``login_redirect_url`` set, the browser is sent there with
    ``auth=success`` or ``auth=error&message=<reason>``; otherwise the
    outcome is returned as JSON.
    """
    settings = services.settings
    landing = settings.login_redirect_url
    try:
        if error:
            raise OAuthCallbackFailed("provider_error", f"Provider returned error: {error}")
        identity, token = await _complete_login(
            services, code, state, request.cookies.get(_STATE_COOKIE)
        )
    except OAuthCallbackFailed as exc:
        logger.warning("OAuth callback rejected kind=%s", exc.reason)
        if not landing:
            raise
        query = urlencode({"auth": "error", "message": exc.reason})
        return RedirectResponse(f"{landing}?{query}", status_code=status.HTTP_303_SEE_OTHER)

    if landing:
        response: Response = RedirectResponse(
            f"{landing}?auth=success", status_code=status.HTTP_303_SEE_OTHER
        )
    else:
        response = JSONResponse(LoginResponse(success=True, user=_user(identity)).model_dump())
    set_session_cookie(response, token, settings)
    response.delete_cookie(_STATE_COOKIE)
    return response


@router.post("/callback", response_model=LoginResponse)
async def oauth_callback_post(
    body: CallbackRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
) -> LoginResponse:
    """Same login as the GET callback, for clients that relay the code themselves."""
    identity, token = await _complete_login(
        services, body.code, body.state, request.cookies.get(_STATE_COOKIE)
    )
    set_session_cookie(response, token, services.settings)
    response.delete_cookie(_STATE_COOKIE)
    return LoginResponse(success=True, user=_user(identity))


@router.get("/me", response_model=UserResponse)
async def me(identity: IdentityContext = Depends(get_current_identity)) -> UserResponse:
    """Return the authenticated caller."""
    return _user(identity)


@router.get("/session", response_model=SessionResponse)
async def session(
    identity: Optional[IdentityContext] = Depends(get_optional_identity),
) -> SessionResponse:
    """Report whether the caller has a live session; never rejects."""
    if identity is None:
        return SessionResponse(authenticated=False)
    return SessionResponse(authenticated=True, user=_user(identity))


@router.post("/logout")
async def logout(
    response: Response,
    identity: Optional[IdentityContext] = Depends(get_optional_identity),
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    """Revoke the provider credential (if any) and drop the session cookie."""
    if identity is not None:
        await services.manager.revoke(identity.identity_id)
        logger.info("Logout identity=%s", identity.identity_id)
    clear_session_cookie(response, services.settings)
    return {"success": True, "authenticated": False}


@router.get("/tokens/stats", response_model=TokenStatsResponse)
async def token_stats(
    _identity: IdentityContext = Depends(get_current_identity),
    services: Services = Depends(get_services),
) -> TokenStatsResponse:
    """Counts of stored credentials; never exposes token material."""
    stats = await services.manager.get_token_stats()
    return TokenStatsResponse(
        total=stats.total,
        valid=stats.valid,
        expired=stats.expired,
        storage_type=stats.storage_type,
    )
