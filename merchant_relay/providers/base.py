"""Abstract base class for upstream login flows.

A login flow is two upstream steps: a request step that asks upstream to
start a login for an identity (email or phone number), and an exchange step
that trades a secret (password or one-time code) for an access/refresh token
pair. Both flows end in a populated session record, so the web layer can use
either one interchangeably.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from merchant_relay.core.schemas.session import SessionRecord


class AuthFlow(ABC):
    """Abstract base class for login flows.

    Methods are async to support non-blocking I/O against the upstream
    identity endpoints.

    Example usage:
        flow = PasswordFlow(http, tokens)
        await flow.login(record, "owner@example.com", "secret")
        assert record.is_authenticated
    """

    #: Prefix of the failure labels raised by this flow, e.g. ``password``
    name: str = ""

    @abstractmethod
    async def request_step(self, record: SessionRecord, identity: str) -> Dict[str, Any]:
        """Ask upstream to start a login for ``identity``.

        Args:
            record: Session record the login belongs to.
            identity: Email address or phone number.

        Returns:
            Parsed upstream response body (may be empty).

        Raises:
            AuthFlowFailure: With stage ``request-failed`` on a non-2xx answer.
        """
        pass

    @abstractmethod
    async def exchange_step(self, record: SessionRecord, identity: str, secret: str) -> None:
        """Exchange the secret for tokens and seal them into ``record``.

        The record is left untouched unless the exchange fully succeeds.

        Args:
            record: Session record to populate.
            identity: Email address or phone number used in the request step.
            secret: Password or one-time code; never stored.

        Raises:
            AuthFlowFailure: On a non-2xx answer or a response without tokens.
        """
        pass
