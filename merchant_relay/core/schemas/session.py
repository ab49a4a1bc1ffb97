"""Client-held session record schema"""

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from merchant_relay.core.security import client_fingerprint

DEFAULT_USER_AGENT = "Mozilla/5.0"


class SessionRecord(BaseModel):
    """The only persisted state of a logged-in merchant.

    Upstream tokens and the one-time-code challenge are stored sealed; the
    whole record is sealed again by the session codec before it leaves the
    process.
    """

    account_handle: str = Field(..., min_length=1, description="Refresh-lock key")
    client_identity: str = Field("", description="Raw User-Agent of the client")
    client_fingerprint: str = Field(..., min_length=1)

    access_credential: Optional[str] = Field(None, description="Sealed access token")
    refresh_credential: Optional[str] = Field(None, description="Sealed refresh token")
    credential_expiry: int = Field(0, ge=0, description="Epoch milliseconds")

    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None

    otp_challenge: Optional[str] = Field(None, description="Sealed upstream otp_token")

    model_config = ConfigDict(validate_assignment=True)

    @classmethod
    def new(cls, client_identity: Optional[str]) -> "SessionRecord":
        """Create an empty record bound to the requesting client."""
        identity = client_identity or ""
        return cls(
            account_handle=str(uuid.uuid4()),
            client_identity=identity,
            client_fingerprint=client_fingerprint(identity),
        )

    @property
    def is_authenticated(self) -> bool:
        # An expired access token is refreshed, a missing refresh token is not
        return bool(self.refresh_credential)

    @property
    def user_agent(self) -> str:
        return self.client_identity or DEFAULT_USER_AGENT
