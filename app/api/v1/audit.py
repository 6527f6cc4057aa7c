# app/api/v1/audit.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.db.session import get_db
from app.models.enums import ParticipantRole
from app.models.funding_timeline import FundingTimeline
from app.policies.rbac import Principal
from app.schemas.audit import AuditEntryView, AuditListResponse
from app.services.audit_service import AuditService

router = APIRouter(prefix="/audit")


def _can_view(db: Session, principal: Principal, subject_id: str) -> bool:
    if principal.role == ParticipantRole.ADMIN:
        return True
    if subject_id == principal.participant_id:
        return True
    try:
        row = db.get(FundingTimeline, uuid.UUID(subject_id))
    except ValueError:
        return False
    return bool(row) and principal.participant_id in (row.startup_id, row.agency_id)


@router.get("", response_model=AuditListResponse)
def get_audit_log(
    subjectId: str = Query(..., min_length=1, max_length=64),
    limit: int = Query(200, ge=1, le=1000),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Admins see any subject; parties see their own timelines and wallet."""
    if not _can_view(db, principal, subjectId):
        raise HTTPException(status_code=403, detail="Not allowed to view this audit trail.")

    rows = AuditService().list_for_subject(db, subject_id=subjectId, limit=limit)
    entries = [
        AuditEntryView(
            action=r.action,
            subjectType=r.subject_type,
            subjectId=r.subject_id,
            actorParticipantId=r.actor_participant_id,
            actorRole=r.actor_role,
            requestId=r.request_id,
            payloadHash=r.payload_hash,
            details=r.details_json or {},
            createdAt=r.created_at.isoformat() if r.created_at else None,
        )
        for r in rows
    ]
    return AuditListResponse(subjectId=subjectId, count=len(entries), entries=entries)
