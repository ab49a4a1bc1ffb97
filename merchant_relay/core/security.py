"""
Security utilities for the merchant relay.

This module provides the master key handling used by the sealed session
cookie, client fingerprinting, and log/response sanitizing helpers.
"""

import binascii
import hashlib
import logging
import re
import secrets
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

MASTER_KEY_BYTES = 32


def generate_master_key() -> str:
    """
    Generate a cryptographically secure master key.

    Returns:
        64 hex characters suitable for the MASTER_KEY setting
    """
    return secrets.token_hex(MASTER_KEY_BYTES)


def load_master_key(master_key: Optional[str]) -> bytes:
    """
    Decode and validate the MASTER_KEY setting.

    Args:
        master_key: Hex-encoded key from configuration

    Returns:
        The raw 32-byte key

    Raises:
        ValueError: If the key is missing, not hex, or not exactly 32 bytes
    """
    if not master_key:
        raise ValueError("Missing env: MASTER_KEY")

    try:
        key = binascii.unhexlify(master_key.strip())
    except (binascii.Error, ValueError) as e:
        raise ValueError("MASTER_KEY must be hex encoded") from e

    if len(key) != MASTER_KEY_BYTES:
        raise ValueError("MASTER_KEY must be 32 bytes hex (64 chars)")

    logger.debug("MASTER_KEY validation passed")
    return key


def client_fingerprint(client_identity: Optional[str]) -> str:
    """Hash the client identity so the raw User-Agent is not compared directly."""
    return hashlib.sha256((client_identity or "").encode("utf-8")).hexdigest()


def sanitize_log_data(data: str, max_length: int = 100) -> str:
    """
    Sanitize data for safe logging.

    Args:
        data: The data to sanitize
        max_length: Maximum length to log

    Returns:
        Sanitized data safe for logging
    """
    if not data:
        return ""

    if len(data) > max_length:
        data = data[:max_length] + "..."

    # Mask bearer tokens and long opaque values
    data = re.sub(r"(?i)bearer\s+[^\s'\"]+", "Bearer ****", data)
    data = re.sub(r"\b[A-Za-z0-9+/_\-.]{32,}\b", "****", data)

    data = re.sub(
        r"(?i)(password|otp|secret|key|token)['\"\s]*[:=]['\"\s]*[^\s'\",}]+",
        r"\1=****",
        data,
    )

    return data


def mask_email(email: str) -> str:
    """Keep the first letter and the domain of an email address."""
    return re.sub(
        r"\b([a-zA-Z0-9])[a-zA-Z0-9._%+-]*@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b",
        r"\1****@\2",
        email or "",
    )


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Middleware adding baseline security headers to every response.

    The API only serves JSON, so the content security policy denies all
    sources.
    """

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        security_headers = {
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "Referrer-Policy": "strict-origin-when-cross-origin",
            "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
            "Cache-Control": "no-store",
        }
        for header, value in security_headers.items():
            response.headers.setdefault(header, value)

        return response
