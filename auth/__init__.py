"""
auth — Request authentication module.

Provides:
  • Signed session token issue & verification
  • The per-request auth gate (required / optional / scope checks)
  • Sliding-window rate limiting
  • FastAPI dependencies and the ``/api/v1/auth`` routes
"""
