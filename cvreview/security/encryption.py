"""AES-256-GCM encryption for calendar OAuth tokens at rest.

Access and refresh tokens are encrypted before they reach the
calendar_credentials table and decrypted only when the conferencing bridge
needs to call Google.
Stored format: base64(nonce || ciphertext || tag), 12-byte random nonce.

Usage:
    from cvreview.security.encryption import token_encryptor

    stored = token_encryptor.encrypt(access_token)
    access_token = token_encryptor.decrypt(stored)
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cvreview.config import settings

logger = logging.getLogger(__name__)

_NONCE_SIZE = 12  # 96-bit nonce for AES-GCM
_TAG_SIZE = 16


class TokenEncryptor:
    """Stateless AES-256-GCM encryptor; every call draws a fresh nonce."""

    def __init__(self, key: bytes) -> None:
        if len(key) != 32:
            msg = f"AES-256 requires a 32-byte key, got {len(key)} bytes"
            raise ValueError(msg)
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(_NONCE_SIZE)
        ct = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ct).decode("ascii")

    def decrypt(self, token: str) -> str:
        raw = base64.b64decode(token)
        if len(raw) < _NONCE_SIZE + _TAG_SIZE:
            msg = "Invalid encrypted token: too short"
            raise ValueError(msg)
        return self._aesgcm.decrypt(raw[:_NONCE_SIZE], raw[_NONCE_SIZE:], None).decode("utf-8")


def _load_key() -> bytes:
    """Load the base64 key from settings, or fall back to an ephemeral one."""
    raw = settings.security.encryption_key
    if not raw:
        logger.warning("ENCRYPTION_KEY not set: using a random ephemeral key (stored tokens won't decrypt after restart)")
        return os.urandom(32)
    try:
        key = base64.b64decode(raw, validate=True)
    except binascii.Error:
        logger.warning("ENCRYPTION_KEY is not valid base64: using a random ephemeral key")
        return os.urandom(32)
    if len(key) != 32:
        logger.warning("ENCRYPTION_KEY decoded to %d bytes (expected 32): using a random ephemeral key", len(key))
        return os.urandom(32)
    return key


# Module-level singleton
token_encryptor = TokenEncryptor(_load_key())
