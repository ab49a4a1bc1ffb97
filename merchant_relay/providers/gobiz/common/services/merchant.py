import logging
from typing import Any, Dict, List, Optional

from merchant_relay.core.config import settings
from merchant_relay.core.schemas.session import SessionRecord
from merchant_relay.core.schemas.transactions import NormalizedTransaction
from merchant_relay.providers.gobiz.common.exceptions import MerchantNotFound
from merchant_relay.providers.gobiz.common.projection import normalize_transaction
from merchant_relay.providers.gobiz.common.services.api_client import ResilientClient

MERCHANT_SEARCH_PATH = "/v1/merchants/search"
JOURNAL_SEARCH_PATH = "/journals/search"
JOURNAL_ACCEPT = "application/json, application/vnd.journal.v1+json"

logger = logging.getLogger(__name__)


def build_journal_query(
    merchant_id: str, date_ymd: str, size: int = 50, utc_offset: str = "+07:00"
) -> Dict[str, Any]:
    """Ledger search body for one merchant and one local day, newest first"""
    time_field = "metadata.transaction.transaction_time"
    return {
        "from": 0,
        "size": size,
        "sort": {"time": {"order": "desc"}},
        "included_categories": {"incoming": ["transaction_share", "action"]},
        "query": [
            {
                "op": "and",
                "clauses": [
                    {"field": "metadata.transaction.merchant_id", "op": "equal", "value": merchant_id},
                    {"field": time_field, "op": "gte", "value": f"{date_ymd}T00:00:00{utc_offset}"},
                    {"field": time_field, "op": "lte", "value": f"{date_ymd}T23:59:59{utc_offset}"},
                ],
            }
        ],
    }


class MerchantService:
    """Merchant identity and ledger lookups for an authenticated session"""

    def __init__(self, client: ResilientClient, utc_offset: Optional[str] = None):
        self.client = client
        self.utc_offset = utc_offset or settings.merchant_utc_offset

    async def get_merchant_id(self, record: SessionRecord) -> Optional[str]:
        """
        Look up the merchant of the account and cache it on the record.

        Returns:
            The merchant id, or the previously cached one if the search is empty
        """
        result = await self.client.call(
            record,
            "POST",
            MERCHANT_SEARCH_PATH,
            {"from": 0, "to": 1, "_source": ["id", "name"]},
        )

        hits = result.get("hits") if isinstance(result, dict) else None
        merchant = hits[0] if isinstance(hits, list) and hits else None
        if isinstance(merchant, dict) and merchant.get("id"):
            record.merchant_id = str(merchant["id"])
            record.merchant_name = merchant.get("name") or record.merchant_name
            logger.debug("Merchant identity resolved", extra={"merchant_id": record.merchant_id})

        return record.merchant_id

    async def get_transactions(
        self, record: SessionRecord, date_ymd: str, size: int = 50
    ) -> List[NormalizedTransaction]:
        """
        Fetch the merchant's incoming transactions for one local day.

        Args:
            record: Authenticated session record
            date_ymd: Day as YYYY-MM-DD in the merchant's timezone
            size: Page size

        Raises:
            MerchantNotFound: If the account has no merchant
        """
        merchant_id = record.merchant_id or await self.get_merchant_id(record)
        if not merchant_id:
            raise MerchantNotFound()

        result = await self.client.call(
            record,
            "POST",
            JOURNAL_SEARCH_PATH,
            build_journal_query(merchant_id, date_ymd, size, self.utc_offset),
            {"Accept": JOURNAL_ACCEPT},
        )

        hits = result.get("hits") if isinstance(result, dict) else None
        if not isinstance(hits, list):
            return []
        return [normalize_transaction(hit) for hit in hits]
