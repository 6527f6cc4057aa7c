# app/api/v1/timeline.py
from __future__ import annotations

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.api.v1.wallet import receipt_view
from app.core.auth_deps import get_current_principal
from app.core.deps_idempotency import IdempotencyContext, idempotency_guard
from app.core.errors import FundingError, to_http
from app.core.rate_limit import limit_money_movement
from app.db.session import get_db
from app.models.enums import Decision
from app.policies.rbac import Principal
from app.schemas.timeline import (
    ContingencyDecisionRequest,
    ContingencyFormView,
    FormFiledResponse,
    PaymentResponse,
    TimelineListResponse,
    TimelineProposeRequest,
    TimelineView,
)
from app.services.audit_service import AuditAction, AuditService
from app.services.storage_service import InvoiceStorage, get_invoice_storage
from app.services.timeline_service import TimelineService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/timeline")


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _audit(db: Session, request: Request, principal: Principal, timeline_id, action: str, details=None, commit=True):
    AuditService().write(
        db,
        subject_type="funding_timeline",
        subject_id=str(timeline_id),
        actor=principal,
        action=action,
        request_id=_request_id(request),
        details=details or {},
        commit=commit,
    )


# ─────────────────────────────────────────────────────────────
# POST /timeline (proposal)
# ─────────────────────────────────────────────────────────────

@router.post("", response_model=TimelineView, status_code=201)
def propose_timeline(
    body: TimelineProposeRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = TimelineService()
    stage_amounts = (
        {stage.value: amount for stage, amount in body.stageAmounts.items()}
        if body.stageAmounts is not None
        else None
    )
    try:
        row = svc.propose(
            db,
            principal=principal,
            counterparty_id=body.counterpartyId,
            total_amount=body.totalAmount,
            stage_amounts=stage_amounts,
        )
    except FundingError as e:
        db.rollback()
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    _audit(
        db,
        request,
        principal,
        row.id,
        AuditAction.TIMELINE_PROPOSED,
        {"counterpartyId": body.counterpartyId, "totalAmount": row.total_amount},
    )
    return svc.projection(row, principal)


# ─────────────────────────────────────────────────────────────
# GET /timeline, GET /timeline/{id}
# ─────────────────────────────────────────────────────────────

@router.get("", response_model=TimelineListResponse)
def list_timelines(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = TimelineService()
    rows = svc.list_for_principal(db, principal)
    return {"count": len(rows), "timelines": [svc.projection(r, principal) for r in rows]}


@router.get("/{timeline_id}", response_model=TimelineView)
def get_timeline(
    timeline_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = TimelineService()
    try:
        row = svc.get_for_viewer(db, timeline_id, principal)
    except FundingError as e:
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return svc.projection(row, principal)


# ─────────────────────────────────────────────────────────────
# Acceptance gate
# ─────────────────────────────────────────────────────────────

@router.post("/{timeline_id}/accept", response_model=TimelineView)
def accept_timeline(
    timeline_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = TimelineService()
    try:
        row = svc.accept(db, timeline_id=timeline_id, principal=principal)
    except FundingError as e:
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    _audit(db, request, principal, row.id, AuditAction.TIMELINE_ACCEPTED)
    return svc.projection(row, principal)


@router.post("/{timeline_id}/reject", response_model=TimelineView)
def reject_timeline(
    timeline_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = TimelineService()
    try:
        row = svc.reject(db, timeline_id=timeline_id, principal=principal)
    except FundingError as e:
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    _audit(db, request, principal, row.id, AuditAction.TIMELINE_REJECTED)
    return svc.projection(row, principal)


# ─────────────────────────────────────────────────────────────
# POST /timeline/{id}/pay (agency releases the active stage)
# ─────────────────────────────────────────────────────────────

@router.post(
    "/{timeline_id}/pay",
    response_model=PaymentResponse,
    dependencies=[Depends(limit_money_movement)],
)
def pay_active_stage(
    timeline_id: uuid.UUID,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: IdempotencyContext = Depends(idempotency_guard),
):
    if idem.is_replay:
        return idem.replay()

    svc = TimelineService()
    try:
        row, receipt, stage = svc.process_payment(
            db, timeline_id=timeline_id, principal=principal, commit=False
        )
        response = PaymentResponse(
            paidStage=stage,
            receipt=receipt_view(receipt),
            timeline=TimelineView(**svc.projection(row, principal)),
        ).model_dump(mode="json")

        idem.store(db, response)
        _audit(
            db,
            request,
            principal,
            row.id,
            AuditAction.STAGE_PAID,
            {"stage": stage, "reference": receipt.reference if receipt else None},
            commit=False,
        )
        db.commit()
    except FundingError as e:
        db.rollback()
        raise to_http(e)
    except PermissionError as e:
        db.rollback()
        raise HTTPException(status_code=403, detail=str(e))
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Duplicate request in flight.")

    return response


# ─────────────────────────────────────────────────────────────
# Contingency forms
# ─────────────────────────────────────────────────────────────

@router.post("/{timeline_id}/form", response_model=FormFiledResponse, status_code=201)
def file_contingency_form(
    timeline_id: uuid.UUID,
    request: Request,
    description: str = Form("", max_length=2000),
    fundingAmount: int = Form(...),
    stageOfFunding: str = Form(...),
    invoices: Optional[List[UploadFile]] = File(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    storage: InvoiceStorage = Depends(get_invoice_storage),
):
    """
    Multipart: description, fundingAmount, stageOfFunding and any number of
    invoice files. Invoices are stored first; if filing fails they are
    removed again.
    """
    stored = []
    svc = TimelineService()
    try:
        for f in invoices or []:
            stored.append(
                storage.upload_file(filename=f.filename, content_type=f.content_type, fileobj=f.file)
            )
        row, form_index = svc.file_contingency_form(
            db,
            timeline_id=timeline_id,
            principal=principal,
            stage_key=stageOfFunding,
            description=description,
            amount=fundingAmount,
            invoices=stored,
        )
    except (FundingError, PermissionError) as e:
        for inv in stored:
            storage.delete(inv.identifier)
        if isinstance(e, PermissionError):
            raise HTTPException(status_code=403, detail=str(e))
        raise to_http(e)

    _audit(
        db,
        request,
        principal,
        row.id,
        AuditAction.CONTINGENCY_FILED,
        {
            "formIndex": form_index,
            "stage": stageOfFunding,
            "amount": fundingAmount,
            "invoices": [inv.identifier for inv in stored],
        },
    )
    return {"formIndex": form_index, "timeline": svc.projection(row, principal)}


@router.get("/{timeline_id}/forms", response_model=List[ContingencyFormView])
def list_contingency_forms(
    timeline_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    svc = TimelineService()
    try:
        row = svc.get_for_viewer(db, timeline_id, principal)
    except FundingError as e:
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))
    return svc.projection(row, principal)["contingencyForms"]


def _decide_form(
    decision: Decision,
    timeline_id: uuid.UUID,
    body: ContingencyDecisionRequest,
    request: Request,
    db: Session,
    principal: Principal,
):
    svc = TimelineService()
    try:
        row = svc.decide_contingency_form(
            db,
            timeline_id=timeline_id,
            principal=principal,
            form_index=body.formIndex,
            decision=decision,
        )
    except FundingError as e:
        raise to_http(e)
    except PermissionError as e:
        raise HTTPException(status_code=403, detail=str(e))

    action = (
        AuditAction.CONTINGENCY_ACCEPTED
        if decision == Decision.accepted
        else AuditAction.CONTINGENCY_REJECTED
    )
    _audit(db, request, principal, row.id, action, {"formIndex": body.formIndex})
    return svc.projection(row, principal)


@router.post("/{timeline_id}/forms/accept", response_model=TimelineView)
def accept_contingency_form(
    timeline_id: uuid.UUID,
    body: ContingencyDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return _decide_form(Decision.accepted, timeline_id, body, request, db, principal)


@router.post("/{timeline_id}/forms/reject", response_model=TimelineView)
def reject_contingency_form(
    timeline_id: uuid.UUID,
    body: ContingencyDecisionRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    return _decide_form(Decision.rejected, timeline_id, body, request, db, principal)


@router.post(
    "/{timeline_id}/forms/{form_index}/pay",
    response_model=PaymentResponse,
    dependencies=[Depends(limit_money_movement)],
)
def pay_contingency_form(
    timeline_id: uuid.UUID,
    form_index: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    idem: IdempotencyContext = Depends(idempotency_guard),
):
    if idem.is_replay:
        return idem.replay()

    svc = TimelineService()
    try:
        row, receipt = svc.pay_contingency_form(
            db,
            timeline_id=timeline_id,
            principal=principal,
            form_index=form_index,
            commit=False,
        )
        response = PaymentResponse(
            paidFormIndex=form_index,
            receipt=receipt_view(receipt),
            timeline=TimelineView(**svc.projection(row, principal)),
        ).model_dump(mode="json")

        idem.store(db, response)
        _audit(
            db,
            request,
            principal,
            row.id,
            AuditAction.CONTINGENCY_PAID,
            {"formIndex": form_index, "reference": receipt.reference, "amount": receipt.amount},
            commit=False,
        )
        db.commit()
    except FundingError as e:
        db.rollback()
        raise to_http(e)
    except PermissionError as e:
        db.rollback()
        raise HTTPException(status_code=403, detail=str(e))
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Duplicate request in flight.")

    return response
