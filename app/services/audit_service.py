from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.hashing import canonical_dumps, sha256_hex
from app.models.audit_log import AuditLog
from app.policies.rbac import Principal


class AuditAction:
    # Timeline gate
    TIMELINE_PROPOSED = "TIMELINE_PROPOSED"
    TIMELINE_ACCEPTED = "TIMELINE_ACCEPTED"
    TIMELINE_REJECTED = "TIMELINE_REJECTED"

    # Money movement
    STAGE_PAID = "STAGE_PAID"
    CONTINGENCY_PAID = "CONTINGENCY_PAID"
    WALLET_TRANSFER = "WALLET_TRANSFER"
    WALLET_DEPOSIT = "WALLET_DEPOSIT"

    # Contingency queue
    CONTINGENCY_FILED = "CONTINGENCY_FILED"
    CONTINGENCY_ACCEPTED = "CONTINGENCY_ACCEPTED"
    CONTINGENCY_REJECTED = "CONTINGENCY_REJECTED"

    # Research
    PAPER_PUBLISHED = "PAPER_PUBLISHED"
    PAPER_PURCHASED = "PAPER_PURCHASED"


def _payload_hash(payload: Dict[str, Any]) -> str:
    return sha256_hex(canonical_dumps(payload))


class AuditService:
    def write(
        self,
        db: Session,
        *,
        subject_type: str,
        subject_id: str,
        actor: Optional[Principal],
        action: str,
        request_id: Optional[str],
        details: Dict[str, Any],
        commit: bool = True,
    ) -> AuditLog:
        """
        Append-only audit record insert.

        details MUST be safe: ids, amounts, decisions. No invoice contents.
        """
        row = AuditLog(
            subject_type=subject_type,
            subject_id=subject_id,
            actor_participant_id=actor.participant_id if actor else None,
            actor_role=actor.role.value if actor else None,
            action=action,
            request_id=request_id,
            payload_hash=_payload_hash(details),
            details_json=details,
        )
        db.add(row)
        if commit:
            db.commit()
        else:
            db.flush()
        return row

    def list_for_subject(
        self,
        db: Session,
        *,
        subject_id: str,
        limit: int = 200,
    ) -> List[AuditLog]:
        return (
            db.execute(
                select(AuditLog)
                .where(AuditLog.subject_id == subject_id)
                .order_by(AuditLog.created_at.asc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
