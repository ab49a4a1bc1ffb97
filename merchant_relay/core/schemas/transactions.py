"""Merchant ledger response schemas"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NormalizedTransaction(BaseModel):
    """One upstream ledger entry in a stable shape"""

    id: Optional[str] = Field(None, description="Upstream entry or order id")
    time: Optional[str] = Field(None, description="ISO-8601 transaction time")
    status: Optional[str] = None
    payment_type: Optional[str] = Field(None, serialization_alias="paymentType")
    amount: int = Field(0, description="Amount in major currency units (Rupiah)")
    raw: Dict[str, Any] = Field(default_factory=dict, description="Original upstream entry")

    model_config = ConfigDict(populate_by_name=True)


class MerchantResponse(BaseModel):
    """Cached merchant identity of the session"""

    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None


class TransactionListResponse(BaseModel):
    """Transactions of one merchant for one day"""

    merchant_id: Optional[str] = None
    merchant_name: Optional[str] = None
    date: str = Field(..., description="Day queried, YYYY-MM-DD")
    count: int
    total_amount: int
    transactions: List[NormalizedTransaction]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "merchant_id": "G123456789",
                "merchant_name": "Warung Contoh",
                "date": "2026-10-19",
                "count": 1,
                "total_amount": 1500,
                "transactions": [
                    {
                        "id": "d1f0c6b2",
                        "time": "2026-10-19T09:15:00+07:00",
                        "status": "settlement",
                        "paymentType": "qris",
                        "amount": 1500,
                        "raw": {},
                    }
                ],
            }
        }
    )
