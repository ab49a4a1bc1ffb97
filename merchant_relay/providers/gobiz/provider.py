"""GoBiz provider facade.

This module implements the GoBizProvider class that wires the GoBiz-specific
services (token lifecycle, resilient client, login flows, merchant lookups)
around a single shared ``httpx.AsyncClient`` so the web layer has one object
to hold on to for the lifetime of the application.
"""

import logging
from typing import Optional

import httpx

from merchant_relay.core.config import settings
from merchant_relay.core.utils.encryption import SealedBox, get_sealed_box
from merchant_relay.core.utils.session_codec import SessionCodec
from merchant_relay.providers.gobiz.common.services.api_client import ResilientClient
from merchant_relay.providers.gobiz.common.services.auth_flows import OtpFlow, PasswordFlow
from merchant_relay.providers.gobiz.common.services.merchant import MerchantService
from merchant_relay.providers.gobiz.common.services.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)


class GoBizProvider:
    """GoBiz merchant portal provider.

    Example usage:
        provider = GoBizProvider.create()
        record = SessionRecord.new(user_agent)
        await provider.password_flow.login(record, "owner@example.com", "secret")
        transactions = await provider.merchant.get_transactions(record, "2026-10-19")
        cookie_value = provider.codec.encode(record)
        await provider.aclose()

    Attributes:
        http: Client bound to the GoBiz API base URL
        box: Sealed box shared by the session codec and the token fields
        codec: Session codec for the cookie value
        tokens: Token lifecycle manager (one refresh table per provider)
        client: Resilient authenticated client
        password_flow: Email + password login
        otp_flow: Phone + one-time code login
        merchant: Merchant and ledger lookups
    """

    def __init__(self, http: httpx.AsyncClient, box: SealedBox) -> None:
        self.http = http
        self.box = box
        self.codec = SessionCodec(box)
        self.tokens = TokenLifecycleManager(http, box)
        self.client = ResilientClient(http, self.tokens)
        self.password_flow = PasswordFlow(http, self.tokens)
        self.otp_flow = OtpFlow(http, self.tokens)
        self.merchant = MerchantService(self.client)

    @classmethod
    def create(
        cls,
        box: Optional[SealedBox] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "GoBizProvider":
        """Build a provider with its own HTTP client.

        Args:
            box: Sealed box to use; defaults to the one built from MASTER_KEY
            transport: Optional transport, e.g. ``httpx.MockTransport`` in tests

        Raises:
            ValueError: If no box is given and MASTER_KEY is missing or malformed
        """
        http = httpx.AsyncClient(
            base_url=settings.gobiz_api_base,
            timeout=settings.upstream_timeout,
            transport=transport,
        )
        logger.info("GoBiz provider initialized for %s", settings.gobiz_api_base)
        return cls(http, box or get_sealed_box())

    async def aclose(self) -> None:
        await self.http.aclose()
