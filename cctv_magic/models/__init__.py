from cctv_magic.models.user import User
from cctv_magic.models.video_job import VideoJob
from cctv_magic.models.transaction import Transaction
from cctv_magic.models.credit_ledger import CreditLedgerEntry
from cctv_magic.models.predefined_prompt import PredefinedPrompt
from cctv_magic.models.audit_log import AuditLog
from cctv_magic.models.failed_job import FailedJob

__all__ = [
    "User",
    "VideoJob",
    "Transaction",
    "CreditLedgerEntry",
    "PredefinedPrompt",
    "AuditLog",
    "FailedJob",
]
