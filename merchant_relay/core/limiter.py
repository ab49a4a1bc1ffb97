"""
Request limits for the relay.

Login and code endpoints are the password and OTP guessing surface toward
GoBiz; read endpoints are limited so a stuck dashboard cannot hammer the
ledger search. Counters live in Redis when ``REDIS_URL`` is set so several
relay instances share them.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from slowapi import Limiter
from slowapi.util import get_remote_address

from merchant_relay.core.config import settings

logger = logging.getLogger(__name__)


def redacted_url(url: str) -> str:
    """Storage URL without its password, for logs."""
    parts = urlsplit(url)
    if not parts.password:
        return url
    netloc = parts.netloc.replace(f":{parts.password}@", ":****@", 1)
    return parts._replace(netloc=netloc).geturl()


def get_limiter_storage(redis_url: Optional[str] = None) -> Optional[str]:
    """Redis URL for shared counters, or None for per-process memory."""
    url = settings.redis_url if redis_url is None else redis_url
    if not url:
        return None
    if not url.startswith(("redis://", "rediss://")):
        logger.warning("Ignoring REDIS_URL %s: not a redis:// URL", redacted_url(url))
        return None
    logger.info("Rate limit counters in Redis at %s", redacted_url(url))
    return url


def create_limiter(redis_url: Optional[str] = None) -> Limiter:
    # Limits are declared per endpoint; 429s carry Retry-After
    options: Dict[str, Any] = {
        "key_func": get_remote_address,
        "default_limits": [],
        "headers_enabled": True,
    }
    storage_uri = get_limiter_storage(redis_url)
    if storage_uri:
        options["storage_uri"] = storage_uri
    else:
        logger.info("Rate limit counters in process memory")
    return Limiter(**options)


limiter = create_limiter()
