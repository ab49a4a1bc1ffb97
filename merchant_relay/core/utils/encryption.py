"""
Encryption utilities for sealing session data handed to the client.
"""

import base64
import binascii
import logging
import os
from functools import lru_cache
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from merchant_relay.core.config import settings
from merchant_relay.core.security import MASTER_KEY_BYTES, load_master_key

logger = logging.getLogger(__name__)

NONCE_BYTES = 12
TAG_BYTES = 16


class SealFailure(Exception):
    """Raised internally when a sealed blob cannot be opened."""


class SealedBox:
    """Authenticated encryption of opaque blobs with a fixed AES-256-GCM key.

    Sealed output is ``nonce || tag || ciphertext``, URL-safe base64 encoded
    so it can travel as a cookie value.
    """

    def __init__(self, key: bytes):
        """Initialize the box.

        Args:
            key: Raw 32-byte key, fixed for the process lifetime

        Raises:
            ValueError: If the key is not exactly 32 bytes
        """
        if not isinstance(key, (bytes, bytearray)) or len(key) != MASTER_KEY_BYTES:
            raise ValueError("Sealed box key must be exactly 32 bytes")
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_hex(cls, master_key: Optional[str]) -> "SealedBox":
        return cls(load_master_key(master_key))

    def seal(self, plaintext: bytes) -> str:
        """
        Encrypt and authenticate a blob.

        Args:
            plaintext: Bytes to protect

        Returns:
            URL-safe base64 string of nonce, tag and ciphertext
        """
        nonce = os.urandom(NONCE_BYTES)
        # AESGCM appends the tag to the ciphertext
        sealed = self._aead.encrypt(nonce, plaintext, None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return base64.urlsafe_b64encode(nonce + tag + ciphertext).decode("ascii")

    def unseal(self, blob: Optional[str]) -> Optional[bytes]:
        """
        Verify and decrypt a sealed blob.

        Args:
            blob: Value previously produced by ``seal``

        Returns:
            The plaintext, or None if the blob is malformed, was sealed with
            another key, or fails authentication
        """
        try:
            return self._open(blob)
        except SealFailure as e:
            logger.debug("Discarding sealed blob", extra={"reason": str(e)})
            return None

    def seal_text(self, text: Optional[str]) -> Optional[str]:
        if text is None:
            return None
        return self.seal(str(text).encode("utf-8"))

    def unseal_text(self, blob: Optional[str]) -> Optional[str]:
        raw = self.unseal(blob)
        if raw is None:
            return None
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def _open(self, blob: Optional[str]) -> bytes:
        if not blob:
            raise SealFailure("empty")
        try:
            if isinstance(blob, str):
                blob = blob.encode("ascii")
            raw = base64.b64decode(blob, altchars=b"-_", validate=True)
        except (binascii.Error, ValueError, TypeError) as e:
            raise SealFailure("not base64") from e

        if len(raw) < NONCE_BYTES + TAG_BYTES:
            raise SealFailure("truncated")

        nonce = raw[:NONCE_BYTES]
        tag = raw[NONCE_BYTES:NONCE_BYTES + TAG_BYTES]
        ciphertext = raw[NONCE_BYTES + TAG_BYTES:]
        try:
            return self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise SealFailure("authentication failed") from e


@lru_cache(maxsize=1)
def get_sealed_box() -> SealedBox:
    """
    Build the process-wide sealed box from MASTER_KEY.

    Raises:
        ValueError: If MASTER_KEY is absent or invalid
    """
    return SealedBox.from_hex(settings.master_key)
