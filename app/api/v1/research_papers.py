# app/api/v1/research_papers.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.v1.wallet import receipt_view
from app.core.auth_deps import get_current_principal
from app.core.deps_idempotency import IdempotencyContext, idempotency_guard
from app.core.errors import FundingError, to_http
from app.core.rate_limit import limit_money_movement
from app.db.session import get_db
from app.models.research_paper import ResearchPaper
from app.policies.rbac import Principal
from app.schemas.research import (
    PaperCreateRequest,
    PaperListResponse,
    PaperView,
    PurchaseResponse,
)
from app.services.audit_service import AuditAction, AuditService
from app.services.research_service import ResearchService
from app.services.wallet_service import WalletService

router = APIRouter(prefix="/research-papers")


def _paper_view(p: ResearchPaper) -> PaperView:
    return PaperView(
        id=str(p.id),
        researcherId=p.researcher_id,
        title=p.title,
        price=p.price,
        createdAt=p.created_at.isoformat() if p.created_at else None,
    )


@router.get("", response_model=PaperListResponse)
def list_papers(
    researcherId: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    _principal: Principal = Depends(get_current_principal),
):
    papers = ResearchService().list_papers(db, researcher_id=researcherId)
    return PaperListResponse(count=len(papers), papers=[_paper_view(p) for p in papers])


@router.post("", response_model=PaperView, status_code=201)
def publish_paper(
    body: PaperCreateRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        paper = ResearchService().publish(db, principal=principal, title=body.title, price=body.price)
    except FundingError as e:
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    AuditService().write(
        db,
        subject_type="research_paper",
        subject_id=str(paper.id),
        actor=principal,
        action=AuditAction.PAPER_PUBLISHED,
        request_id=getattr(request.state, "request_id", None),
        details={"price": paper.price},
    )
    return _paper_view(paper)


@router.post(
    "/{paper_id}/purchase",
    response_model=PurchaseResponse,
    dependencies=[Depends(limit_money_movement)],
)
def purchase_paper(
    paper_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: IdempotencyContext = Depends(idempotency_guard),
):
    if idem.is_replay:
        return idem.replay()

    try:
        access, receipt = ResearchService().purchase(
            db, principal=principal, paper_id=paper_id, commit=False
        )
        balance = (
            receipt.sender_balance_after
            if receipt
            else WalletService().get_balance(db, principal.participant_id)
        )
        response = PurchaseResponse(
            paperId=str(paper_id),
            balance=balance,
            receipt=receipt_view(receipt),
        ).model_dump(mode="json")

        idem.store(db, response)
        AuditService().write(
            db,
            subject_type="research_paper",
            subject_id=str(paper_id),
            actor=principal,
            action=AuditAction.PAPER_PURCHASED,
            request_id=getattr(request.state, "request_id", None),
            details={"reference": access.reference, "amount": receipt.amount if receipt else 0},
            commit=False,
        )
        db.commit()
    except FundingError as e:
        db.rollback()
        raise to_http(e)
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Duplicate request in flight.")

    return response
