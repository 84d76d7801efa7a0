from datetime import datetime

from beanie import Document, PydanticObjectId
from pydantic import Field
from pymongo import ASCENDING, DESCENDING, IndexModel


class CreditLedgerEntry(Document):
    user_id: PydanticObjectId
    amount: int  # positive = credit, negative = debit
    balance_after: int
    reason: str  # generation, refund, purchase, signup_bonus
    reference_type: str | None = None  # video_job, stripe_session
    reference_id: str | None = None
    idempotency_key: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "credit_ledger"
        indexes = [
            [("user_id", ASCENDING), ("created_at", DESCENDING)],
            # Keyed grants apply once; unkeyed debits are not constrained
            IndexModel(
                [("idempotency_key", ASCENDING)],
                unique=True,
                partialFilterExpression={"idempotency_key": {"$type": "string"}},
            ),
        ]
