from app.schemas.primitives import Money, NonNegMoney, UserId
from app.schemas.wallet import TransferRequest, DepositRequest, ReceiptView, BalanceResponse
from app.schemas.timeline import (
    TimelineProposeRequest,
    ContingencyDecisionRequest,
    TimelineView,
    PaymentResponse,
)
from app.schemas.research import PaperCreateRequest, PaperView, PurchaseResponse
from app.schemas.notifications import NotificationView, NotificationListResponse
from app.schemas.audit import AuditEntryView, AuditListResponse
