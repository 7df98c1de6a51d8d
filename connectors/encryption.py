"""
Token encryption — encrypt / decrypt OAuth tokens at rest.

Uses AES-256-GCM from the ``cryptography`` library.  Each call draws a
fresh 96-bit nonce, stored next to the ciphertext as ``iv_hex:ct_hex``.

The key is loaded from ``config.token_encryption_key``
(env var: ``TOKEN_ENCRYPTION_KEY``) and must decode to exactly 32 bytes,
either as 64 hex characters or as URL-safe base64.  There is no fallback:
a missing key stops the service at startup, because a key generated on the
fly would silently orphan every stored token on the next restart.
Generate one with::

    python -c "import secrets; print(secrets.token_hex(32))"
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from config.settings import Settings

logger = logging.getLogger(__name__)

_KEY_BYTES = 32
_NONCE_BYTES = 12


class EncryptionError(Exception):
    """The cipher could not be built or a value could not be encrypted."""


class DecryptionError(Exception):
    """Ciphertext is malformed, foreign, or has been tampered with."""


def parse_key(raw: str) -> bytes:
    """Decode an operator-supplied key into 32 raw bytes."""
    raw = (raw or "").strip()
    if not raw:
        raise EncryptionError(
            "TOKEN_ENCRYPTION_KEY is not set. "
            "Generate a key: python -c \"import secrets; print(secrets.token_hex(32))\""
        )

    if len(raw) == _KEY_BYTES * 2:
        try:
            return bytes.fromhex(raw)
        except ValueError:
            pass

    try:
        key = base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4))
    except (binascii.Error, ValueError) as exc:
        raise EncryptionError("TOKEN_ENCRYPTION_KEY is neither hex nor base64") from exc

    if len(key) != _KEY_BYTES:
        raise EncryptionError(
            f"TOKEN_ENCRYPTION_KEY must decode to {_KEY_BYTES} bytes, got {len(key)}"
        )
    return key


class TokenCipher:
    """Field-level AES-256-GCM cipher for credential secrets."""

    def __init__(self, key: bytes):
        if len(key) != _KEY_BYTES:
            raise EncryptionError(f"AES-256 key must be {_KEY_BYTES} bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCipher":
        cipher = cls(parse_key(settings.token_encryption_key))
        logger.info("Token encryption enabled (AES-256-GCM)")
        return cipher

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext`` under a fresh nonce, returning ``iv:ciphertext``."""
        nonce = os.urandom(_NONCE_BYTES)
        try:
            ciphertext = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        except (TypeError, ValueError, OverflowError) as exc:
            raise EncryptionError(str(exc)) from exc
        return f"{nonce.hex()}:{ciphertext.hex()}"

    def decrypt(self, encoded: str) -> str:
        """Reverse :meth:`encrypt`.  Raises ``DecryptionError`` on any failure."""
        iv_hex, sep, ct_hex = (encoded or "").partition(":")
        if not sep:
            raise DecryptionError("missing iv separator")
        try:
            nonce = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(ct_hex)
        except ValueError as exc:
            raise DecryptionError("ciphertext is not hex encoded") from exc
        if len(nonce) != _NONCE_BYTES:
            raise DecryptionError("bad iv length")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as exc:
            raise DecryptionError("authentication tag mismatch") from exc
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("plaintext is not utf-8") from exc
