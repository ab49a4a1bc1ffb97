"""
Authentication API endpoints with rate limiting.

This module provides the merchant login endpoints (email + password and
phone + one-time code), logout and session status. Login endpoints are rate
limited to slow down credential stuffing; failures answer with a generic
message and the upstream detail is only logged.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, Field

from merchant_relay.api.dependencies import client_ip, get_gobiz_provider
from merchant_relay.core.config import settings
from merchant_relay.core.limiter import limiter
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.security import mask_email, sanitize_log_data
from merchant_relay.core.utils.logging_config import log_security_event
from merchant_relay.core.utils.session_store import (
    clear_session,
    client_identity,
    load_session,
    save_session,
)
from merchant_relay.providers.gobiz import GoBizProvider
from merchant_relay.providers.gobiz.common.exceptions import GoBizError

logger = logging.getLogger(__name__)

router = APIRouter()

LOGIN_FAILED_DETAIL = "Login failed. Check email/password."
CODE_REQUEST_FAILED_DETAIL = "Could not send verification code."
CODE_VERIFY_FAILED_DETAIL = "Verification failed. Check the code and try again."
NO_PENDING_CODE_DETAIL = "No pending verification. Request a new code."


class LoginRequest(BaseModel):
    """Email + password login request."""

    email: str = Field(..., max_length=254, description="Merchant account email")
    password: str = Field(..., max_length=256, description="Merchant account password")


class CodeRequest(BaseModel):
    phone: str = Field(..., max_length=32, description="Phone number, with or without country code")


class CodeVerification(BaseModel):
    code: str = Field(..., max_length=16, description="One-time code received by SMS")


class SessionStatus(BaseModel):
    """Response model for session status checks."""

    authenticated: bool
    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


def _status(record: Optional[SessionRecord]) -> SessionStatus:
    if record is None or not record.is_authenticated:
        return SessionStatus(authenticated=False)
    return SessionStatus(
        authenticated=True,
        merchant_id=record.merchant_id,
        merchant_name=record.merchant_name,
    )


async def _resolve_merchant(provider: GoBizProvider, record: SessionRecord) -> None:
    # Best effort; the transactions endpoint retries the lookup
    try:
        await provider.merchant.get_merchant_id(record)
    except GoBizError as e:
        logger.warning("Merchant lookup after login failed: %s", sanitize_log_data(str(e)))


@router.post("/login", response_model=SessionStatus)
@limiter.limit(settings.rate_limit_auth_endpoints)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """
    Log in with email and password.

    On success the sealed session is set as a cookie. Rate limited per
    client IP address.

    Raises:
        HTTPException: 400 with a generic message if the login fails
    """
    record = SessionRecord.new(client_identity(request))

    try:
        await provider.password_flow.login(record, credentials.email, credentials.password)
    except GoBizError as e:
        log_security_event(
            "login_failed",
            f"Password login failed for {mask_email(credentials.email)}",
            ip_address=client_ip(request),
            error=e,
        )
        raise HTTPException(status_code=400, detail=LOGIN_FAILED_DETAIL)

    await _resolve_merchant(provider, record)
    save_session(response, record, provider.codec)

    log_security_event(
        "login",
        "Password login succeeded",
        account_handle=record.account_handle,
        ip_address=client_ip(request),
    )
    return _status(record)


@router.post("/otp/request", response_model=MessageResponse)
@limiter.limit(settings.rate_limit_auth_endpoints)
async def request_code(
    request: Request,
    response: Response,
    body: CodeRequest,
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """
    Ask upstream to send a one-time login code by SMS.

    Starts a new, not yet authenticated session; the cookie carries the
    pending challenge to the verify step.
    """
    record = SessionRecord.new(client_identity(request))

    try:
        await provider.otp_flow.request_code(record, body.phone)
    except GoBizError as e:
        log_security_event(
            "otp_request_failed",
            "One-time code request failed",
            ip_address=client_ip(request),
            error=e,
        )
        raise HTTPException(status_code=400, detail=CODE_REQUEST_FAILED_DETAIL)

    save_session(response, record, provider.codec)
    return MessageResponse(message="Verification code sent")


@router.post("/otp/verify", response_model=SessionStatus)
@limiter.limit(settings.rate_limit_auth_endpoints)
async def verify_code(
    request: Request,
    response: Response,
    body: CodeVerification,
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """
    Exchange the one-time code for a logged-in session.

    Raises:
        HTTPException: 400 if there is no pending request or the code is rejected
    """
    record = load_session(request, provider.codec)
    if record is None:
        raise HTTPException(status_code=400, detail=NO_PENDING_CODE_DETAIL)

    try:
        await provider.otp_flow.verify_code(record, body.code)
    except GoBizError as e:
        log_security_event(
            "login_failed",
            "One-time code login failed",
            account_handle=record.account_handle,
            ip_address=client_ip(request),
            error=e,
        )
        raise HTTPException(status_code=400, detail=CODE_VERIFY_FAILED_DETAIL)

    await _resolve_merchant(provider, record)
    save_session(response, record, provider.codec)

    log_security_event(
        "login",
        "One-time code login succeeded",
        account_handle=record.account_handle,
        ip_address=client_ip(request),
    )
    return _status(record)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """Drop the session cookie. Upstream tokens simply expire."""
    record = load_session(request, provider.codec)
    clear_session(response)

    log_security_event(
        "logout",
        "Session logged out",
        account_handle=record.account_handle if record else None,
        ip_address=client_ip(request),
    )
    return MessageResponse(message="Logged out")


@router.get("/session", response_model=SessionStatus)
async def session_status(
    request: Request,
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """Report whether the request carries a usable session."""
    return _status(load_session(request, provider.codec))
