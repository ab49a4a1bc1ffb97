"""Shared FastAPI dependencies for the merchant API routes"""

import logging

from fastapi import Depends, Request
from fastapi.responses import JSONResponse

from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.utils.session_store import clear_session, load_session
from merchant_relay.providers.gobiz import GoBizProvider

logger = logging.getLogger(__name__)

SESSION_EXPIRED_DETAIL = "Session expired. Please log in again."
NOT_AUTHENTICATED_DETAIL = "Not authenticated"


class SessionExpired(Exception):
    """Raised when a request needs a session it does not have.

    Handled by ``session_expired_handler``, which answers 401 and clears the
    session cookie.
    """

    def __init__(self, detail: str = SESSION_EXPIRED_DETAIL):
        self.detail = detail
        super().__init__(detail)


async def session_expired_handler(request: Request, exc: SessionExpired) -> JSONResponse:
    response = JSONResponse(status_code=401, content={"detail": exc.detail})
    clear_session(response)
    return response


def get_gobiz_provider(request: Request) -> GoBizProvider:
    """Provider created in the application lifespan"""
    return request.app.state.gobiz


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def require_session(
    request: Request, provider: GoBizProvider = Depends(get_gobiz_provider)
) -> SessionRecord:
    """
    Load the authenticated session record of the request.

    Raises:
        SessionExpired: If the cookie is missing, unusable or carries no
            refresh token
    """
    record = load_session(request, provider.codec)
    if record is None or not record.is_authenticated:
        raise SessionExpired(NOT_AUTHENTICATED_DETAIL)
    return record
