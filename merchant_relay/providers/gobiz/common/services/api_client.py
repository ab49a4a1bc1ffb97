"""Authenticated GoBiz API client with retry, backoff and re-authentication.

Retry policy (``max_retries`` attempts beyond the first):

- transport errors back off exponentially from ``network_backoff_base_ms``
- 429/502/503/504 honor ``Retry-After`` or back off from
  ``upstream_backoff_base_ms``
- a 401 forces one token refresh and exactly one re-issued call, outside
  the budget; that call is not retried
- any other non-2xx fails immediately
"""

import asyncio
import logging
import math
import random
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from merchant_relay.core.config import settings
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.providers.gobiz.common.exceptions import (
    NetworkFailure,
    RetryExhausted,
    UpstreamFailure,
    parse_body,
)
from merchant_relay.providers.gobiz.common.headers import base_headers
from merchant_relay.providers.gobiz.common.services.token_manager import (
    TokenLifecycleManager,
    to_number,
)

RETRYABLE_STATUSES = frozenset({429, 502, 503, 504})

logger = logging.getLogger(__name__)


class ResilientClient:
    """Issues bearer-authenticated calls on behalf of a session record."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenLifecycleManager,
        max_retries: Optional[int] = None,
        network_backoff_base_ms: Optional[int] = None,
        upstream_backoff_base_ms: Optional[int] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.http = http
        self.tokens = tokens
        self.max_retries = settings.max_retries if max_retries is None else max_retries
        self.network_backoff_base_ms = (
            settings.network_backoff_base_ms if network_backoff_base_ms is None else network_backoff_base_ms
        )
        self.upstream_backoff_base_ms = (
            settings.upstream_backoff_base_ms if upstream_backoff_base_ms is None else upstream_backoff_base_ms
        )
        self._sleep = sleep
        self._rng = rng or random.SystemRandom()

    def backoff_ms(self, base_ms: int, attempt: int) -> int:
        """Exponential backoff with +/-25% jitter."""
        return int(base_ms * (2 ** attempt) * (0.75 + self._rng.random() * 0.5))

    @staticmethod
    def retry_after_ms(response: httpx.Response) -> int:
        """Upstream Retry-After in ms, capped at the upstream timeout."""
        seconds = to_number(response.headers.get("retry-after"))
        if not math.isfinite(seconds) or seconds <= 0:
            return 0
        return int(min(seconds, settings.upstream_timeout) * 1000)

    async def call(
        self,
        record: SessionRecord,
        method: str,
        path: str,
        body: Any = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Perform an authenticated upstream call.

        Args:
            record: Session record; credential fields change if a refresh happens
            method: HTTP method
            path: Path relative to the GoBiz API base URL
            body: JSON body, if any
            extra_headers: Headers overriding the defaults

        Returns:
            Parsed JSON body, text body, or None for an empty body

        Raises:
            RefreshFailure: If the token could not be refreshed
            NetworkFailure: If every attempt failed at the transport level
            UpstreamFailure: On a non-retryable or exhausted upstream status
        """
        access = await self.tokens.get_valid_access_credential(record)
        attempt = 0

        while attempt <= self.max_retries:
            try:
                response = await self._send(record, access, method, path, body, extra_headers)
            except httpx.TransportError as e:
                if attempt < self.max_retries:
                    delay = self.backoff_ms(self.network_backoff_base_ms, attempt)
                    logger.warning(
                        "Network error calling %s %s, retrying in %dms (%s)",
                        method, path, delay, type(e).__name__,
                    )
                    await self._sleep(delay / 1000)
                    attempt += 1
                    continue
                raise NetworkFailure(str(e) or type(e).__name__) from e

            status = response.status_code

            if status == 401:
                logger.info("Upstream rejected access token, forcing refresh")
                access = await self.tokens.refresh(record)
                return await self._reissue(record, access, method, path, body, extra_headers)

            if status in RETRYABLE_STATUSES:
                if attempt < self.max_retries:
                    delay = self.retry_after_ms(response) or self.backoff_ms(
                        self.upstream_backoff_base_ms, attempt
                    )
                    logger.warning(
                        "Upstream %s for %s %s, retrying in %dms", status, method, path, delay
                    )
                    await self._sleep(delay / 1000)
                    attempt += 1
                    continue
                raise UpstreamFailure.from_response(response, "upstream-error")

            if not response.is_success:
                raise UpstreamFailure.from_response(response, "upstream-error")

            return parse_body(response)

        raise RetryExhausted()

    async def _reissue(
        self,
        record: SessionRecord,
        access: str,
        method: str,
        path: str,
        body: Any,
        extra_headers: Optional[Dict[str, str]],
    ) -> Any:
        """Single call with the refreshed token; no further retries."""
        try:
            response = await self._send(record, access, method, path, body, extra_headers)
        except httpx.TransportError as e:
            raise NetworkFailure(str(e) or type(e).__name__) from e

        if response.status_code == 401:
            raise UpstreamFailure.from_response(response, "unauthorized")
        if not response.is_success:
            raise UpstreamFailure.from_response(response, "upstream-error")
        return parse_body(response)

    async def _send(
        self,
        record: SessionRecord,
        access: str,
        method: str,
        path: str,
        body: Any,
        extra_headers: Optional[Dict[str, str]],
    ) -> httpx.Response:
        headers = {
            **base_headers(record),
            "Authorization": f"Bearer {access}",
            **(extra_headers or {}),
        }
        return await self.http.request(method, path, json=body, headers=headers)
