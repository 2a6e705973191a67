from datetime import datetime
from typing import Literal

from beanie import Document, PydanticObjectId
from pydantic import Field

GenerationModel = Literal["V3_5", "V4", "V4_5"]
GenerationStatus = Literal["pending", "processing", "completed", "failed"]


class GenerationRecord(Document):
    """One generation request. Status is mutated only by app.services.generation_state."""
    user_id: PydanticObjectId
    prompt: str
    title: str | None = None
    model: GenerationModel
    duration_seconds: int
    tokens_reserved: int
    status: GenerationStatus = "pending"
    error_message: str | None = None
    refund_due: bool = False  # set on entering failed, cleared once the refund is credited
    refund_claimed_at: datetime | None = None  # lease held by the caller settling the refund
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    completed_at: datetime | None = None

    class Settings:
        name = "generations"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("status", 1), ("updated_at", 1)],
        ]
