from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field


class User(Document):
    auth_id: Indexed(str, unique=True)  # Supabase auth user id
    email: Indexed(str)
    credits: int = Field(default=0, ge=0)
    theme_preference: str = "christmas"
    session_version: int = 0
    last_login_at: datetime | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "users"
