from datetime import datetime

from beanie import Document
from pydantic import Field


class TokenPackage(Document):
    name: str
    description: str | None = None
    token_amount: int
    price_usd: float
    is_active: bool = True
    display_order: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "token_packages"
        indexes = [[("is_active", 1), ("display_order", 1)]]
