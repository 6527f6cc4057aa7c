# app/api/v1/wallet.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.deps_idempotency import IdempotencyContext, idempotency_guard
from app.core.errors import FundingError, to_http
from app.core.rate_limit import limit_money_movement
from app.db.session import get_db
from app.models.enums import TransferCategory
from app.models.transfer_receipt import TransferReceipt
from app.models.wallet import WalletEntry
from app.policies.rbac import Principal
from app.schemas.wallet import (
    BalanceResponse,
    ChainVerifyResponse,
    DepositRequest,
    DepositResponse,
    ReceiptView,
    TransferRequest,
    TransferResponse,
    WalletEntryView,
)
from app.services.audit_service import AuditAction, AuditService
from app.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/wallet")


# ─────────────────────────────────────────────────────────────
# Helpers (shared with the timeline and research routers)
# ─────────────────────────────────────────────────────────────

def _iso(dt):
    return dt.isoformat() if dt else None


def receipt_view(r: Optional[TransferReceipt]) -> Optional[ReceiptView]:
    if r is None:
        return None
    return ReceiptView(
        reference=r.reference,
        senderId=r.sender_id,
        receiverId=r.receiver_id,
        amount=r.amount,
        category=r.category,
        senderBalance=r.sender_balance_after,
        receiverBalance=r.receiver_balance_after,
        createdAt=_iso(r.created_at),
    )


def entry_view(e: WalletEntry) -> WalletEntryView:
    return WalletEntryView(
        seq=e.seq,
        type=e.entry_type,
        category=e.category,
        amount=e.amount,
        balanceAfter=e.balance_after,
        reference=e.reference,
        description=e.description,
        counterpartyId=e.counterparty_user_id,
        createdAt=_iso(e.created_at),
    )


# ─────────────────────────────────────────────────────────────
# GET /wallet/balance
# ─────────────────────────────────────────────────────────────

@router.get("/balance", response_model=BalanceResponse)
def get_balance(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = WalletService()
    entries = svc.list_entries(db, user_id=principal.participant_id, limit=limit)
    return BalanceResponse(
        userId=principal.participant_id,
        balance=svc.get_balance(db, principal.participant_id),
        transactions=[entry_view(e) for e in entries],
    )


# ─────────────────────────────────────────────────────────────
# POST /wallet/deposit
# ─────────────────────────────────────────────────────────────

@router.post("/deposit", response_model=DepositResponse)
def deposit(
    body: DepositRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = WalletService()
    try:
        entry = svc.deposit(db, user_id=principal.participant_id, amount=body.amount, commit=False)
        AuditService().write(
            db,
            subject_type="wallet",
            subject_id=principal.participant_id,
            actor=principal,
            action=AuditAction.WALLET_DEPOSIT,
            request_id=getattr(request.state, "request_id", None),
            details={"amount": body.amount, "reference": entry.reference},
            commit=False,
        )
        db.commit()
    except FundingError as e:
        db.rollback()
        raise to_http(e)

    return DepositResponse(balance=entry.balance_after, transaction=entry_view(entry))


# ─────────────────────────────────────────────────────────────
# POST /wallet/transfer
# ─────────────────────────────────────────────────────────────

@router.post(
    "/transfer",
    response_model=TransferResponse,
    dependencies=[Depends(limit_money_movement)],
)
def transfer(
    body: TransferRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: IdempotencyContext = Depends(idempotency_guard),
):
    if idem.is_replay:
        return idem.replay()

    svc = WalletService()
    try:
        receipt = svc.transfer(
            db,
            sender_id=principal.participant_id,
            receiver_id=body.receiverId,
            amount=body.amount,
            category=TransferCategory.transfer,
            description=body.description or "Wallet transfer",
            commit=False,
        )
        response = TransferResponse(
            balance=receipt.sender_balance_after,
            receipt=receipt_view(receipt),
        ).model_dump(mode="json")

        idem.store(db, response)
        AuditService().write(
            db,
            subject_type="wallet",
            subject_id=principal.participant_id,
            actor=principal,
            action=AuditAction.WALLET_TRANSFER,
            request_id=getattr(request.state, "request_id", None),
            details={
                "reference": receipt.reference,
                "receiverId": body.receiverId,
                "amount": body.amount,
            },
            commit=False,
        )
        db.commit()
    except FundingError as e:
        db.rollback()
        raise to_http(e)
    except IntegrityError:
        db.rollback()
        logger.warning("[wallet] duplicate in-flight transfer key=%s", idem.idem_key)
        raise HTTPException(status_code=409, detail="Duplicate request in flight.")

    return response


# ─────────────────────────────────────────────────────────────
# GET /wallet/verify
# ─────────────────────────────────────────────────────────────

@router.get("/verify", response_model=ChainVerifyResponse)
def verify_wallet_chain(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Hash-chain and balance consistency check of the caller's wallet."""
    ok = WalletService().verify_chain(db, user_id=principal.participant_id)
    logger.info("[wallet/verify] user=%s valid=%s", principal.participant_id, ok)
    return ChainVerifyResponse(userId=principal.participant_id, valid=ok)
