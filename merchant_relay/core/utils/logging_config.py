"""
Logging for the merchant relay.

Every record carries the request's correlation id (``X-Request-ID``). In JSON
mode extra fields whose names look like secrets are redacted, and upstream
error text is scrubbed of tokens before it is written. Security events
(login, logout, forced logout) go to the ``security.events`` logger.
"""

import json
import logging
import re
import sys
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from merchant_relay.core.config import settings
from merchant_relay.core.security import sanitize_log_data

correlation_id_ctx: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

SECURITY_LOGGER = "security.events"
PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"

SENSITIVE_FIELD = re.compile(
    r"password|secret|key|token|credential|otp|challenge|cookie|authorization",
    re.IGNORECASE,
)
# Free text that may echo upstream bodies
SCRUBBED_FIELDS = frozenset({"upstream_message", "error_detail"})

_LOG_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "correlation_id"}


class CorrelationIdFilter(logging.Filter):
    """Stamp the current correlation id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_ctx.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, include_sensitive: bool = False):
        super().__init__()
        self.include_sensitive = include_sensitive

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        correlation_id = getattr(record, "correlation_id", None) or correlation_id_ctx.get()
        if correlation_id and correlation_id != "-":
            entry["correlation_id"] = correlation_id

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {
            key: self._field(key, value)
            for key, value in record.__dict__.items()
            if key not in _LOG_RECORD_ATTRS
        }
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=str)

    def _field(self, key: str, value: Any) -> Any:
        if self.include_sensitive:
            return value
        if SENSITIVE_FIELD.search(key):
            return "[REDACTED]"
        if key in SCRUBBED_FIELDS and isinstance(value, str):
            return sanitize_log_data(value, max_length=200)
        return value


def setup_logging(
    log_level: str = "INFO",
    enable_json: bool = True,
    include_sensitive: bool = False,
) -> None:
    """
    Send all logs to stdout, JSON in production and plain text in development.

    Args:
        log_level: Root logger level name
        enable_json: Use StructuredFormatter instead of the plain format
        include_sensitive: Keep secret-looking extra fields (development only)
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    if enable_json:
        handler.setFormatter(StructuredFormatter(include_sensitive=include_sensitive))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.addHandler(handler)

    # httpx logs every upstream request at INFO, including the URL
    for name in ("httpx", "httpcore", "uvicorn.access"):
        logging.getLogger(name).setLevel(logging.WARNING)


def get_correlation_id() -> str:
    correlation_id = correlation_id_ctx.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())
        correlation_id_ctx.set(correlation_id)
    return correlation_id


def set_correlation_id(correlation_id: str) -> None:
    correlation_id_ctx.set(correlation_id)


def log_security_event(
    event_type: str,
    message: str,
    account_handle: Optional[str] = None,
    ip_address: Optional[str] = None,
    error: Optional[Exception] = None,
) -> None:
    """
    Record a session security event.

    Args:
        event_type: login, login_failed, otp_request_failed, logout or forced_logout
        message: Human-readable summary
        account_handle: Session account handle, when one exists
        ip_address: Client address
        error: Upstream failure behind the event; its label, status and
            scrubbed message are logged, never its raw body
    """
    fields: Dict[str, Any] = {
        "event_type": event_type,
        "correlation_id": get_correlation_id(),
    }
    if account_handle:
        fields["account_handle"] = account_handle
    if ip_address:
        fields["ip_address"] = ip_address
    if error is not None:
        fields["reason"] = getattr(error, "label", type(error).__name__)
        fields["upstream_status"] = getattr(error, "status", 0)
        upstream_message = getattr(error, "message", None)
        if upstream_message:
            fields["upstream_message"] = sanitize_log_data(str(upstream_message), max_length=200)

    level = logging.WARNING if error is not None else logging.INFO
    logging.getLogger(SECURITY_LOGGER).log(level, message, extra=fields)


def init_application_logging() -> None:
    """Configure logging from settings; called once at import of the app."""
    dev = settings.dev_mode
    log_level = "DEBUG" if dev else settings.log_level
    setup_logging(log_level=log_level, enable_json=not dev, include_sensitive=dev)

    logging.getLogger("merchant_relay.startup").info(
        "Logging initialized",
        extra={"dev_mode": dev, "json_logging": not dev, "log_level": log_level},
    )
