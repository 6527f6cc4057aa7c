# Importing the package registers every mapped table on Base.metadata.
from app.models.user import User
from app.models.funding_timeline import FundingTimeline
from app.models.wallet import Wallet, WalletEntry
from app.models.transfer_receipt import TransferReceipt
from app.models.research_paper import ResearchPaper, PaperAccess
from app.models.notification import Notification
from app.models.audit_log import AuditLog
from app.models.idempotency_key import IdempotencyKeyRecord

__all__ = [
    "User",
    "FundingTimeline",
    "Wallet",
    "WalletEntry",
    "TransferReceipt",
    "ResearchPaper",
    "PaperAccess",
    "Notification",
    "AuditLog",
    "IdempotencyKeyRecord",
]
