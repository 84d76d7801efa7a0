from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

VideoStatus = Literal["queued", "processing", "completed", "failed"]

PENDING_STATUSES = ("queued", "processing")


class VideoJob(Document):
    """One generation attempt (a video_history row)."""
    user_id: PydanticObjectId
    prompt: str
    image_url: str | None = None  # original upload filename, never the binary
    duration: int
    model: str
    size: str
    credits_charged: int
    status: VideoStatus = "processing"
    job_id: str | None = None  # provider video id
    video_url: str | None = None
    error: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "video_history"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("created_at", 1)],
            [("job_id", 1)],
        ]

    @property
    def is_pending(self) -> bool:
        return self.status in PENDING_STATUSES
