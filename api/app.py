"""
Application factory — wires the credential-custody services into FastAPI.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import Services
from api.middleware import register_middleware
from auth.errors import AuthError
from auth.gate import RequestAuthGate
from auth.jwt import SessionTokenCodec
from auth.rate_limit import SlidingWindowRateLimiter
from auth.routes import clear_session_cookie, router as auth_router
from config.settings import Settings, config
from connectors.base import BaseConnector
from connectors.encryption import TokenCipher
from connectors.reaper import CredentialReaper
from connectors.store import CredentialStore, InMemoryCredentialStore
from connectors.token_manager import TokenLifecycleManager
from connectors.vault import CredentialVault
from connectors.zoom import ZoomConnector

logger = logging.getLogger(__name__)


def build_services(
    settings: Settings,
    *,
    provider: Optional[BaseConnector] = None,
    store: Optional[CredentialStore] = None,
) -> Services:
    """
    Build the service graph.

    Raises ``EncryptionError`` when no usable encryption key is configured
    and ``ValueError`` when ``SESSION_SECRET`` is empty, so a misconfigured
    deployment never starts.
    """
    cipher = TokenCipher.from_settings(settings)
    codec = SessionTokenCodec(settings.session_secret, default_ttl=settings.session_ttl_seconds)
    vault = CredentialVault(store or InMemoryCredentialStore(), cipher)
    provider = provider or ZoomConnector(settings)
    if not provider.is_configured():
        logger.warning("Provider %s is not configured (missing client id/secret)", provider.provider_name)

    manager = TokenLifecycleManager(
        vault,
        provider,
        refresh_window=timedelta(seconds=settings.refresh_window_seconds),
        refresh_timeout=settings.refresh_timeout_seconds,
        grace_period=timedelta(seconds=settings.cleanup_grace_seconds),
    )
    rate_limiter = SlidingWindowRateLimiter(
        settings.rate_limit_requests, settings.rate_limit_window_seconds
    )
    return Services(
        settings=settings,
        vault=vault,
        provider=provider,
        manager=manager,
        codec=codec,
        gate=RequestAuthGate(codec, manager, cookie_name=settings.session_cookie_name),
        rate_limiter=rate_limiter,
        reaper=CredentialReaper(manager, settings.cleanup_interval_seconds, rate_limiter),
    )


def create_app(
    settings: Optional[Settings] = None,
    *,
    services: Optional[Services] = None,
) -> FastAPI:
    settings = settings or config
    services = services or build_services(settings)

    app = FastAPI(
        title="Credential Custody Service",
        version="1.0.0",
        description="Encrypted OAuth credential storage with session auth.",
    )
    app.state.services = services

    register_middleware(app)

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
        response = JSONResponse(
            status_code=exc.status_code,
            content=exc.to_response(),
            headers=exc.headers(),
        )
        if exc.clear_cookie:
            clear_session_cookie(response, services.settings)
        return response

    # Routes
    app.include_router(auth_router, prefix="/api/v1/auth")

    @app.on_event("startup")
    async def on_startup():
        services.reaper.start()
        logger.info("Application ready to accept requests.")

    @app.on_event("shutdown")
    async def on_shutdown():
        await services.reaper.stop()

    return app
