from datetime import datetime

from beanie import Document
from pydantic import Field


class PredefinedPrompt(Document):
    title: str
    prompt: str
    category: str | None = None
    display_order: int = 0
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "predefined_prompts"
        indexes = [[("is_active", 1), ("display_order", 1)]]
