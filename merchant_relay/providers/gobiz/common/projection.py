"""Projection of GoBiz ledger (journal) entries onto NormalizedTransaction.

Every field falls back through an ordered tuple of extractors; the order is
the priority. Nothing here raises on odd upstream shapes.
"""

import math
from typing import Any, Callable, Mapping, Optional, Sequence

from merchant_relay.core.schemas.transactions import NormalizedTransaction
from merchant_relay.providers.gobiz.common.services.token_manager import to_number

Extractor = Callable[[Mapping[str, Any]], Any]


def field(*path: str) -> Extractor:
    """Extractor reading a nested key path, None when any step is missing."""

    def extract(entry: Mapping[str, Any]) -> Any:
        value: Any = entry
        for key in path:
            if not isinstance(value, Mapping):
                return None
            value = value.get(key)
        return value

    extract.__name__ = ".".join(path)
    return extract


def _tx(*path: str) -> Extractor:
    return field("metadata", "transaction", *path)


AMOUNT_EXTRACTORS: Sequence[Extractor] = (
    _tx("gross_amount"),
    _tx("amount"),
    _tx("total_amount"),
    _tx("gopay_amount"),
    _tx("gopay", "amount"),
    _tx("gopay", "gross_amount"),
    _tx("details", "amount"),
    _tx("details", "gross_amount"),
)

ID_EXTRACTORS: Sequence[Extractor] = (
    field("id"),
    field("_id"),
    _tx("order_id"),
    _tx("transaction_id"),
)

TIME_EXTRACTORS: Sequence[Extractor] = (
    _tx("transaction_time"),
    field("time"),
    field("created_at"),
)

STATUS_EXTRACTORS: Sequence[Extractor] = (
    _tx("status"),
    field("status"),
)

PAYMENT_TYPE_EXTRACTORS: Sequence[Extractor] = (
    _tx("payment_type"),
    _tx("payment_type_id"),
)


def first_present(entry: Mapping[str, Any], extractors: Sequence[Extractor]) -> Any:
    """First value that is not None."""
    for extract in extractors:
        value = extract(entry)
        if value is not None:
            return value
    return None


def first_truthy(entry: Mapping[str, Any], extractors: Sequence[Extractor]) -> Any:
    """First value that is not empty (None, "", 0)."""
    for extract in extractors:
        value = extract(entry)
        if value:
            return value
    return None


def minor_to_major(value: Any) -> int:
    """Sen to Rupiah, rounded half up; 0 for anything non-numeric."""
    number = to_number(value)
    if not math.isfinite(number):
        return 0
    return int(math.floor(number / 100 + 0.5))


def _as_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def normalize_transaction(entry: Any) -> NormalizedTransaction:
    if not isinstance(entry, Mapping):
        entry = {}

    return NormalizedTransaction(
        id=_as_str(first_truthy(entry, ID_EXTRACTORS)),
        time=_as_str(first_truthy(entry, TIME_EXTRACTORS)),
        status=_as_str(first_truthy(entry, STATUS_EXTRACTORS)),
        payment_type=_as_str(first_truthy(entry, PAYMENT_TYPE_EXTRACTORS)),
        amount=minor_to_major(first_present(entry, AMOUNT_EXTRACTORS)),
        raw=dict(entry),
    )
