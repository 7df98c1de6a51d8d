"""
Application settings loaded from environment variables.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # ── Session tokens ───────────────────────────────────────────────────
    session_secret: str = ""             # HMAC secret for session tokens (required)
    session_ttl_seconds: int = 604800    # 7 days
    session_cookie_name: str = "auth_token"
    session_cookie_domain: Optional[str] = None
    session_cookie_secure: bool = False
    oauth_state_ttl_seconds: int = 600   # lifetime of the CSRF state handed to the provider
    login_redirect_url: str = ""         # browser landing page after the GET callback; JSON when empty

    # ── Credential custody ───────────────────────────────────────────────
    token_encryption_key: str = ""       # 32-byte AES key, hex or urlsafe base64 (required)
    refresh_window_seconds: int = 300    # refresh when the access token expires sooner than this
    refresh_timeout_seconds: float = 15.0
    cleanup_grace_seconds: int = 3600    # keep expired credentials this long before reaping
    cleanup_interval_seconds: int = 3600

    # ── Rate limiting ────────────────────────────────────────────────────
    rate_limit_requests: int = 100
    rate_limit_window_seconds: float = 60.0

    # ── Zoom OAuth ───────────────────────────────────────────────────────
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_redirect_uri: str = "http://localhost:8000/api/v1/auth/callback"

    # ── Server ───────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


config = Settings()
