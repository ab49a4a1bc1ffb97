import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from merchant_relay.core.config import settings
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.utils.encryption import SealedBox
from merchant_relay.providers.gobiz.common.exceptions import (
    NetworkFailure,
    RefreshFailure,
    parse_body,
)
from merchant_relay.providers.gobiz.common.headers import base_headers

TOKEN_PATH = "/goid/token"
# One year; longer lifetimes are treated as unusable
MAX_EXPIRES_IN = 365 * 24 * 3600

logger = logging.getLogger(__name__)


def to_number(value: Any) -> float:
    """Numbers and numeric strings as float, anything else as NaN."""
    if isinstance(value, bool):
        return math.nan
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError:
            return math.nan
    if isinstance(value, str):
        try:
            return float(value.strip()) if value.strip() else math.nan
        except ValueError:
            return math.nan
    return math.nan


@dataclass(frozen=True)
class TokenGrant:
    """Result of a successful token exchange."""

    access_token: str
    refresh_token: Optional[str]
    expires_at: int  # epoch milliseconds


class TokenLifecycleManager:
    """Service keeping the upstream access token of a session usable (Async).

    Refreshes are single-flight per account handle: concurrent callers for
    the same handle share one upstream exchange and its outcome.
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        box: SealedBox,
        client_id: Optional[str] = None,
        refresh_margin_seconds: Optional[int] = None,
        default_expires_in: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the token manager

        Args:
            http: Client bound to the GoBiz API base URL
            box: Sealed box used for the token fields of the record
            client_id: OAuth client id sent with every exchange
            refresh_margin_seconds: Refresh this long before the access token expires
            default_expires_in: Lifetime assumed when upstream omits expires_in
            clock: Returns the current epoch time in seconds
        """
        self.http = http
        self.box = box
        self.client_id = client_id or settings.gobiz_client_id
        self.refresh_margin_seconds = (
            settings.refresh_margin_seconds if refresh_margin_seconds is None else refresh_margin_seconds
        )
        self.default_expires_in = (
            settings.default_expires_in if default_expires_in is None else default_expires_in
        )
        self._clock = clock
        self._inflight: Dict[str, "asyncio.Task[TokenGrant]"] = {}

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    def is_fresh(self, record: SessionRecord) -> bool:
        """Check whether the cached access token can be used without a refresh"""
        access = self.box.unseal_text(record.access_credential)
        if not access or not record.credential_expiry:
            return False
        margin_ms = self.refresh_margin_seconds * 1000
        return self.now_ms() < record.credential_expiry - margin_ms

    async def get_valid_access_credential(self, record: SessionRecord) -> str:
        """
        Return a usable access token, refreshing it first when needed.

        Args:
            record: Session record; its credential fields are updated on refresh

        Returns:
            The plaintext access token

        Raises:
            RefreshFailure: If a refresh was needed and failed
            NetworkFailure: If the identity endpoint was unreachable
        """
        if self.is_fresh(record):
            return self.box.unseal_text(record.access_credential)
        logger.debug("Access token missing or expiring, refreshing")
        return await self.refresh(record)

    async def refresh(self, record: SessionRecord) -> str:
        """
        Exchange the refresh token for a new access token.

        Joins the in-flight refresh for the same account handle if there is
        one. The resulting grant is applied to ``record``.

        Returns:
            The new plaintext access token
        """
        key = record.account_handle
        task = self._inflight.get(key)

        if task is None:
            refresh_token = self.box.unseal_text(record.refresh_credential)
            if not refresh_token:
                raise RefreshFailure("no-refresh-token")
            task = asyncio.ensure_future(
                self._run_refresh(key, refresh_token, base_headers(record))
            )
            self._inflight[key] = task
        else:
            logger.debug("Joining in-flight token refresh", extra={"account_handle": key})

        # A caller giving up must not cancel the refresh other callers wait on
        grant = await asyncio.shield(task)
        self.apply_grant(record, grant)
        return grant.access_token

    def apply_grant(self, record: SessionRecord, grant: TokenGrant) -> None:
        """Seal the granted tokens into the record."""
        record.access_credential = self.box.seal_text(grant.access_token)
        if grant.refresh_token:
            record.refresh_credential = self.box.seal_text(grant.refresh_token)
        record.credential_expiry = grant.expires_at

    def grant_from_payload(
        self, data: Mapping[str, Any], fallback_refresh: Optional[str] = None
    ) -> TokenGrant:
        """
        Build a grant from a token endpoint response body.

        The refresh token is rotated only when upstream supplies one;
        otherwise ``fallback_refresh`` is kept.
        """
        expires_in = to_number(data.get("expires_in"))
        if not math.isfinite(expires_in) or abs(expires_in) > MAX_EXPIRES_IN:
            expires_in = float(self.default_expires_in)
        return TokenGrant(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or fallback_refresh,
            expires_at=self.now_ms() + int(expires_in * 1000),
        )

    async def _run_refresh(
        self, key: str, refresh_token: str, headers: Dict[str, str]
    ) -> TokenGrant:
        try:
            return await self._exchange_refresh_token(refresh_token, headers)
        finally:
            self._inflight.pop(key, None)

    async def _exchange_refresh_token(
        self, refresh_token: str, headers: Dict[str, str]
    ) -> TokenGrant:
        payload = {
            "client_id": self.client_id,
            "grant_type": "refresh_token",
            "data": {"refresh_token": refresh_token, "user_type": "merchant"},
        }
        try:
            response = await self.http.post(TOKEN_PATH, json=payload, headers=headers)
        except httpx.TransportError as e:
            logger.warning("Token refresh failed to reach upstream: %s", type(e).__name__)
            raise NetworkFailure(str(e) or type(e).__name__) from e

        if not response.is_success:
            logger.warning("Token refresh rejected by upstream", extra={"status": response.status_code})
            raise RefreshFailure.from_response(response, "refresh-failed")

        data = parse_body(response)
        if not isinstance(data, dict) or not data.get("access_token"):
            raise RefreshFailure(
                "refresh-no-access-token", status=response.status_code, upstream=data
            )

        logger.info("Token refresh succeeded")
        return self.grant_from_payload(data, fallback_refresh=refresh_token)
