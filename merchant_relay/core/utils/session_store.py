"""Client-side session storage in a sealed cookie.

The cookie value is the whole session; there is no server-side table. The
codec binds each record to the User-Agent of the client that created it.
"""

import logging
from typing import Optional

from fastapi import Request, Response

from merchant_relay.core.config import settings
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.utils.session_codec import SessionCodec

logger = logging.getLogger(__name__)


def client_identity(request: Request) -> str:
    return request.headers.get("user-agent", "")


def load_session(request: Request, codec: SessionCodec) -> Optional[SessionRecord]:
    """
    Read the session record from the request cookie.

    Returns:
        The record, or None when the cookie is absent or unusable
    """
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    record = codec.decode(token, client_identity(request))
    if record is None:
        logger.debug("Discarding unusable session cookie")
    return record


def save_session(response: Response, record: SessionRecord, codec: SessionCodec) -> None:
    """Seal ``record`` into the session cookie of ``response``."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=codec.encode(record),
        max_age=settings.session_max_age,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )


def clear_session(response: Response) -> None:
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
