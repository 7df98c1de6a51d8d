"""
FastAPI dependencies (shared across routes).

The credential-custody services are built once per application and hung
off ``app.state.services``; routes reach them through ``get_services``.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

from auth.gate import RequestAuthGate
from auth.jwt import SessionTokenCodec
from auth.rate_limit import SlidingWindowRateLimiter
from config.settings import Settings
from connectors.base import BaseConnector
from connectors.reaper import CredentialReaper
from connectors.token_manager import TokenLifecycleManager
from connectors.vault import CredentialVault


@dataclass
class Services:
    settings: Settings
    vault: CredentialVault
    provider: BaseConnector
    manager: TokenLifecycleManager
    codec: SessionTokenCodec
    gate: RequestAuthGate
    rate_limiter: SlidingWindowRateLimiter
    reaper: CredentialReaper


def get_services(request: Request) -> Services:
    """Return the service container attached by ``create_app``."""
    return request.app.state.services
