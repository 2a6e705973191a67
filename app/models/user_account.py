from datetime import datetime

from beanie import Document, Indexed
from pydantic import Field

from app.models.generation import GenerationModel


class UserAccount(Document):
    """Profile and token balance. Balance fields change only through app.services.ledger."""
    email: Indexed(str, unique=True)
    full_name: str | None = None
    token_balance: int = Field(default=0, ge=0)
    total_purchased: int = 0
    total_used: int = 0
    default_model: GenerationModel = "V3_5"
    auto_download: bool = False
    email_notifications: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "user_accounts"
