"""
connectors — OAuth credential custody for the external token provider.

Provides:
  • AES-256-GCM encryption of tokens at rest
  • A pluggable credential store (in-memory by default)
  • Per-identity token refresh with single-flight coalescing
  • Revocation / disconnect and periodic cleanup of expired credentials

The provider itself (Zoom) is a subclass of BaseConnector.
"""
