from app.models.user_account import UserAccount
from app.models.generation import GenerationRecord
from app.models.token_transaction import TokenTransaction
from app.models.token_package import TokenPackage
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob

__all__ = [
    "UserAccount",
    "GenerationRecord",
    "TokenTransaction",
    "TokenPackage",
    "AuditLog",
    "FailedJob",
]
