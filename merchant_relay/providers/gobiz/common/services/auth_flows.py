"""GoBiz login flows: email + password, and phone + one-time code.

Neither flow keeps the password or the code; only the resulting tokens are
sealed into the session record.
"""

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from merchant_relay.core.config import settings
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.security import mask_email
from merchant_relay.providers.base import AuthFlow
from merchant_relay.providers.gobiz.common.exceptions import AuthFlowFailure, parse_body
from merchant_relay.providers.gobiz.common.headers import base_headers
from merchant_relay.providers.gobiz.common.services.token_manager import (
    TOKEN_PATH,
    TokenLifecycleManager,
)

LOGIN_REQUEST_PATH = "/goid/login/request"

logger = logging.getLogger(__name__)


class TokenExchangeFlow(AuthFlow):
    """Shared plumbing for flows ending in a token endpoint exchange."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenLifecycleManager,
        client_id: Optional[str] = None,
    ):
        self.http = http
        self.tokens = tokens
        self.client_id = client_id or settings.gobiz_client_id

    def failure(self, stage: str, **kwargs: Any) -> AuthFlowFailure:
        return AuthFlowFailure(f"{self.name}:{stage}", **kwargs)

    async def _post(
        self, record: SessionRecord, path: str, payload: Dict[str, Any], stage: str
    ) -> Dict[str, Any]:
        try:
            response = await self.http.post(path, json=payload, headers=base_headers(record))
        except httpx.TransportError as e:
            raise self.failure(stage, message=str(e) or type(e).__name__) from e

        if not response.is_success:
            raise AuthFlowFailure.from_response(response, f"{self.name}:{stage}")

        data = parse_body(response)
        return data if isinstance(data, dict) else {}

    async def _exchange(self, record: SessionRecord, payload: Dict[str, Any], stage: str) -> None:
        data = await self._post(record, TOKEN_PATH, payload, stage)
        if not data.get("access_token") or not data.get("refresh_token"):
            raise self.failure("no-token", status=502, upstream=data)
        self.tokens.apply_grant(record, self.tokens.grant_from_payload(data))


class PasswordFlow(TokenExchangeFlow):
    """Email + password login."""

    name = "password"

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenLifecycleManager,
        client_id: Optional[str] = None,
        settle_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(http, tokens, client_id)
        self.settle_delay = settings.login_settle_delay if settle_delay is None else settle_delay
        self._sleep = sleep

    async def login(self, record: SessionRecord, email: str, password: str) -> None:
        """
        Log in with email and password and populate ``record``.

        Args:
            record: Fresh session record
            email: Merchant account email
            password: Merchant account password

        Raises:
            AuthFlowFailure: ``password:invalid-input``, ``password:request-failed``,
                ``password:token-failed`` or ``password:no-token``
        """
        email = (email or "").strip().lower()
        if not email or not password:
            raise self.failure("invalid-input", status=400)

        await self.request_step(record, email)
        # Upstream needs a moment before the login request is visible to /goid/token
        await self._sleep(self.settle_delay)
        await self.exchange_step(record, email, password)

        logger.info("Password login succeeded for %s", mask_email(email))

    async def request_step(self, record: SessionRecord, identity: str) -> Dict[str, Any]:
        payload = {"email": identity, "login_type": "password", "client_id": self.client_id}
        return await self._post(record, LOGIN_REQUEST_PATH, payload, "request-failed")

    async def exchange_step(self, record: SessionRecord, identity: str, secret: str) -> None:
        payload = {
            "client_id": self.client_id,
            "grant_type": "password",
            "data": {"email": identity, "password": secret, "user_type": "merchant"},
        }
        await self._exchange(record, payload, "token-failed")


class OtpFlow(TokenExchangeFlow):
    """Phone number + one-time code login.

    The request step may return an ``otp_token`` that the verify step has to
    echo back; it is kept sealed in ``record.otp_challenge`` in between.
    """

    name = "otp"

    def __init__(
        self,
        http: httpx.AsyncClient,
        tokens: TokenLifecycleManager,
        client_id: Optional[str] = None,
        login_type: Optional[str] = None,
        grant_type: Optional[str] = None,
        country_code: Optional[str] = None,
    ):
        super().__init__(http, tokens, client_id)
        self.login_type = login_type or settings.otp_login_type
        self.grant_type = grant_type or settings.otp_grant_type
        self.country_code = country_code or settings.otp_country_code

    def normalize_phone(self, phone: str) -> str:
        """Digits only, without the country code or the trunk prefix."""
        digits = re.sub(r"\D", "", phone or "")
        if digits.startswith(self.country_code):
            digits = digits[len(self.country_code):]
        return digits.lstrip("0")

    async def request_code(self, record: SessionRecord, phone: str) -> Dict[str, Any]:
        """
        Ask upstream to send a one-time code to ``phone``.

        Raises:
            AuthFlowFailure: ``otp:invalid-input`` or ``otp:request-failed``
        """
        number = self.normalize_phone(phone)
        if not number:
            raise self.failure("invalid-input", status=400)
        data = await self.request_step(record, number)
        logger.info("One-time code requested", extra={"account_handle": record.account_handle})
        return data

    async def verify_code(self, record: SessionRecord, code: str) -> None:
        """
        Exchange the one-time code for tokens and populate ``record``.

        Raises:
            AuthFlowFailure: ``otp:invalid-input``, ``otp:verify-failed`` or
                ``otp:no-token``
        """
        code = (code or "").strip()
        if not code:
            raise self.failure("invalid-input", status=400)
        await self.exchange_step(record, "", code)
        logger.info("One-time code login succeeded", extra={"account_handle": record.account_handle})

    async def request_step(self, record: SessionRecord, identity: str) -> Dict[str, Any]:
        payload = {
            "client_id": self.client_id,
            "phone_number": identity,
            "country_code": self.country_code,
            "login_type": self.login_type,
        }
        data = await self._post(record, LOGIN_REQUEST_PATH, payload, "request-failed")

        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        otp_token = data.get("otp_token") or inner.get("otp_token")
        record.otp_challenge = self.tokens.box.seal_text(otp_token) if otp_token else None
        return data

    async def exchange_step(self, record: SessionRecord, identity: str, secret: str) -> None:
        data: Dict[str, Any] = {"otp": secret, "user_type": "merchant"}
        otp_token = self.tokens.box.unseal_text(record.otp_challenge)
        if otp_token:
            data["otp_token"] = otp_token
        if identity:
            data["phone_number"] = identity

        payload = {"client_id": self.client_id, "grant_type": self.grant_type, "data": data}
        await self._exchange(record, payload, "verify-failed")
        record.otp_challenge = None
