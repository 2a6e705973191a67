from datetime import datetime
from typing import Any, Literal

from beanie import Document
from pydantic import Field

EntityType = Literal["generation", "token_package", "user_account"]


class AuditLog(Document):
    """Balance-affecting events, kept next to the ledger for support lookups."""
    user_id: str | None = None  # None for system events (reconciler)
    event_type: str
    entity_type: EntityType
    entity_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "audit_logs"
        indexes = [
            [("user_id", 1), ("created_at", -1)],
            [("entity_type", 1), ("entity_id", 1)],
        ]
