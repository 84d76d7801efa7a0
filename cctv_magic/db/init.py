import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from cctv_magic.core.config import get_settings
from cctv_magic.models.audit_log import AuditLog
from cctv_magic.models.credit_ledger import CreditLedgerEntry
from cctv_magic.models.failed_job import FailedJob
from cctv_magic.models.predefined_prompt import PredefinedPrompt
from cctv_magic.models.transaction import Transaction
from cctv_magic.models.user import User
from cctv_magic.models.video_job import VideoJob

DOCUMENT_MODELS = [
    User,
    VideoJob,
    Transaction,
    CreditLedgerEntry,
    PredefinedPrompt,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database=None) -> None:
    """Bind document models to ``database`` or to the configured MongoDB."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
