"""Error taxonomy for calls against the GoBiz API."""

from typing import Any, Optional

import httpx

MAX_MESSAGE_LENGTH = 200


def extract_upstream_message(data: Any) -> Optional[str]:
    """Pull a human-readable message out of an upstream error body.

    Structured fields are checked first (``message``, ``error``, ``msg``, then
    the first element of ``errors``); a plain text body is used as is. The
    result is truncated to 200 characters.
    """
    if data is None:
        return None

    message: Any = None
    if isinstance(data, str):
        message = data
    elif isinstance(data, dict):
        message = data.get("message") or data.get("error") or data.get("msg")
        errors = data.get("errors")
        if not message and isinstance(errors, list) and errors:
            first = errors[0]
            if isinstance(first, dict):
                message = first.get("message") or first.get("msg")
            elif isinstance(first, str):
                message = first

    if not message:
        return None
    if not isinstance(message, str):
        # e.g. {"error": {"code": 12}}
        message = str(message)
    return message[:MAX_MESSAGE_LENGTH]


def parse_body(response: httpx.Response) -> Any:
    """JSON body when possible, else the text body, else None."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class GoBizError(Exception):
    """Base class for failures talking to GoBiz.

    Attributes:
        label: Classification label, e.g. ``refresh-failed``
        status: Upstream HTTP status, 0 when there was no response
        message: Truncated upstream message, if one could be extracted
        upstream: Parsed upstream body, kept for logging only
    """

    def __init__(
        self,
        label: str,
        status: int = 0,
        message: Optional[str] = None,
        upstream: Any = None,
    ):
        self.label = label
        self.status = status or 0
        self.message = message
        self.upstream = upstream
        text = f"{label}:{self.status}"
        if message:
            text = f"{text}:{message}"
        super().__init__(text)

    @classmethod
    def from_response(cls, response: httpx.Response, label: str) -> "GoBizError":
        data = parse_body(response)
        return cls(
            label,
            status=response.status_code,
            message=extract_upstream_message(data),
            upstream=data,
        )


class RefreshFailure(GoBizError):
    """Credentials could not be obtained or renewed; the session is invalid."""


class AuthFlowFailure(RefreshFailure):
    """A login flow step failed.

    Labels are ``<flow>:<stage>``, for example ``password:token-failed`` or
    ``otp:request-failed``.
    """


class NetworkFailure(GoBizError):
    """Transport failure (timeout, connection error) after all retries."""

    def __init__(self, message: Optional[str] = None):
        super().__init__("network-error", status=0, message=message)


class UpstreamFailure(GoBizError):
    """Non-2xx upstream response that was not (or no longer) retried."""


class RetryExhausted(GoBizError):
    """The retry loop finished without a terminal outcome.

    This cannot happen under correct control flow; seeing it indicates a bug
    in the retry policy.
    """

    def __init__(self):
        super().__init__("retry-exhausted")


class MerchantNotFound(GoBizError):
    """The account has no merchant the ledger could be scoped to."""

    def __init__(self):
        super().__init__("merchant-not-found")
