import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.core.config import get_settings
from app.models.audit_log import AuditLog
from app.models.failed_job import FailedJob
from app.models.generation import GenerationRecord
from app.models.token_package import TokenPackage
from app.models.token_transaction import TokenTransaction
from app.models.user_account import UserAccount

DOCUMENT_MODELS = [
    UserAccount,
    GenerationRecord,
    TokenTransaction,
    TokenPackage,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database: AsyncIOMotorDatabase | None = None) -> None:
    """Bind document models to the configured database, or to ``database`` when given."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
