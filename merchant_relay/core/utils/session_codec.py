"""
Session codec: the sealed cookie value is the entire session state.

Nothing is stored server side. Every decode failure (bad seal, bad JSON,
unknown schema version, fingerprint mismatch, invalid fields) collapses into
``None`` so callers treat it as "not authenticated".
"""

import hmac
import json
import logging
from typing import Optional

from pydantic import ValidationError

from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.security import client_fingerprint
from merchant_relay.core.utils.encryption import SealedBox

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class SessionCodec:
    """Encodes session records to opaque tokens and back."""

    def __init__(self, box: SealedBox):
        self.box = box

    def encode(self, record: SessionRecord) -> str:
        """
        Serialize and seal a session record.

        Args:
            record: Record to persist on the client

        Returns:
            Opaque token safe to hand to the client
        """
        payload = {"v": SCHEMA_VERSION, **record.model_dump()}
        return self.box.seal(json.dumps(payload, separators=(",", ":")).encode("utf-8"))

    def decode(self, token: Optional[str], client_identity: Optional[str]) -> Optional[SessionRecord]:
        """
        Unseal a token and bind it to the requesting client.

        Args:
            token: Opaque token from ``encode``
            client_identity: Raw User-Agent of the current request

        Returns:
            The session record, or None if the token is unusable
        """
        raw = self.box.unseal(token)
        if raw is None:
            return None

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            logger.debug("Session payload is not valid JSON")
            return None

        if not isinstance(data, dict) or data.pop("v", None) != SCHEMA_VERSION:
            logger.debug("Session payload has an unknown schema version")
            return None

        stored = data.get("client_fingerprint")
        expected = client_fingerprint(client_identity)
        if not isinstance(stored, str) or not hmac.compare_digest(
            stored.encode("utf-8"), expected.encode("utf-8")
        ):
            logger.info("Session fingerprint mismatch, ignoring session cookie")
            return None

        try:
            return SessionRecord.model_validate(data)
        except ValidationError:
            logger.debug("Session payload failed validation")
            return None
