"""
Merchant data API endpoints.

Every call may refresh the upstream tokens, so a successful response always
carries a re-sealed session cookie. Any upstream failure ends the session.
"""

import logging
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from merchant_relay.api.dependencies import (
    SessionExpired,
    client_ip,
    get_gobiz_provider,
    require_session,
)
from merchant_relay.core.config import settings
from merchant_relay.core.limiter import limiter
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.schemas.transactions import MerchantResponse, TransactionListResponse
from merchant_relay.core.utils.logging_config import log_security_event
from merchant_relay.core.utils.session_store import save_session
from merchant_relay.providers.gobiz import GoBizProvider
from merchant_relay.providers.gobiz.common.exceptions import GoBizError

logger = logging.getLogger(__name__)

router = APIRouter()


def merchant_today() -> str:
    """Today's date in the merchant's timezone, YYYY-MM-DD"""
    return datetime.now(ZoneInfo(settings.merchant_timezone)).date().isoformat()


def _forced_logout(request: Request, record: SessionRecord, error: GoBizError) -> SessionExpired:
    log_security_event(
        "forced_logout",
        "Upstream call failed, ending session",
        account_handle=record.account_handle,
        ip_address=client_ip(request),
        error=error,
    )
    return SessionExpired()


@router.get("/merchant", response_model=MerchantResponse)
@limiter.limit(settings.rate_limit_read_endpoints)
async def get_merchant(
    request: Request,
    response: Response,
    record: SessionRecord = Depends(require_session),
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """Merchant identity of the logged-in account, looked up once and cached in the session."""
    if not record.merchant_id:
        try:
            await provider.merchant.get_merchant_id(record)
        except GoBizError as e:
            raise _forced_logout(request, record, e) from e

    save_session(response, record, provider.codec)
    return MerchantResponse(merchant_id=record.merchant_id, merchant_name=record.merchant_name)


@router.get("/transactions", response_model=TransactionListResponse)
@limiter.limit(settings.rate_limit_read_endpoints)
async def list_transactions(
    request: Request,
    response: Response,
    date_ymd: Optional[str] = Query(
        None,
        alias="date",
        pattern=r"^\d{4}-\d{2}-\d{2}$",
        description="Day to list (YYYY-MM-DD), defaults to today in the merchant timezone",
    ),
    size: int = Query(50, ge=1, le=200, description="Maximum number of entries"),
    record: SessionRecord = Depends(require_session),
    provider: GoBizProvider = Depends(get_gobiz_provider),
):
    """
    List the merchant's incoming transactions for one day, newest first.

    Raises:
        HTTPException: 400 if the date is not a real calendar day
        SessionExpired: If any upstream call fails; the cookie is cleared
    """
    if date_ymd is None:
        date_ymd = merchant_today()
    else:
        try:
            date.fromisoformat(date_ymd)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid date")

    try:
        transactions = await provider.merchant.get_transactions(record, date_ymd, size)
    except GoBizError as e:
        raise _forced_logout(request, record, e) from e

    save_session(response, record, provider.codec)

    return TransactionListResponse(
        merchant_id=record.merchant_id,
        merchant_name=record.merchant_name,
        date=date_ymd,
        count=len(transactions),
        total_amount=sum(tx.amount for tx in transactions),
        transactions=transactions,
    )
