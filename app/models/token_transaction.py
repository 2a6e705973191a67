from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

TransactionType = Literal["purchase", "usage", "refund"]


class TokenTransaction(Document):
    """Append-only ledger entry; never updated."""
    user_id: PydanticObjectId
    generation_id: PydanticObjectId | None = None
    type: TransactionType
    token_amount: int  # negative for usage, positive for purchase/refund
    balance_after: int
    price_usd: float | None = None
    package_name: str | None = None
    payment_reference: str | None = None
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "token_transactions"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("generation_id", 1)],
            [("idempotency_key", 1)],
        ]
