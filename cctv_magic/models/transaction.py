from datetime import datetime

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


class Transaction(Document):
    """A confirmed Stripe payment; at most one per checkout session."""
    user_id: PydanticObjectId
    amount: int  # cents
    credits_purchased: int
    stripe_session_id: Indexed(str, unique=True)
    status: str = "completed"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "transactions"
        indexes = [[("user_id", 1), ("created_at", -1)]]
