from __future__ import annotations

from typing import Any, Dict, NamedTuple, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import ConflictError
from app.core.hashing import canonical_dumps, sha256_hex
from app.models.idempotency_key import IdempotencyKeyRecord


class StoredResponse(NamedTuple):
    status: int
    body: Dict[str, Any]


def request_hash(payload: Dict[str, Any]) -> str:
    return sha256_hex(canonical_dumps(payload))


class IdempotencyService:
    """
    Replay store for money-moving POSTs, scoped by
    (participant, "METHOD:path", Idempotency-Key).
    """

    def find(
        self,
        db: Session,
        *,
        participant_id: str,
        endpoint_key: str,
        idem_key: str,
    ) -> Optional[IdempotencyKeyRecord]:
        return db.execute(
            select(IdempotencyKeyRecord).where(
                IdempotencyKeyRecord.participant_id == participant_id,
                IdempotencyKeyRecord.endpoint_key == endpoint_key,
                IdempotencyKeyRecord.idem_key == idem_key,
            )
        ).scalar_one_or_none()

    def check(
        self,
        db: Session,
        *,
        participant_id: str,
        endpoint_key: str,
        idem_key: str,
        req_hash: str,
    ) -> Optional[StoredResponse]:
        """
        None when the key is unused. A stored response when the same request
        was already processed. ConflictError when the key was used with a
        different body.
        """
        existing = self.find(
            db,
            participant_id=participant_id,
            endpoint_key=endpoint_key,
            idem_key=idem_key,
        )
        if existing is None:
            return None
        if existing.request_hash != req_hash:
            raise ConflictError(
                "Idempotency-Key reuse with different payload is not allowed.",
                field="Idempotency-Key",
            )
        return StoredResponse(status=int(existing.response_status), body=existing.response_json)

    def record(
        self,
        db: Session,
        *,
        participant_id: str,
        endpoint_key: str,
        idem_key: str,
        req_hash: str,
        response_json: Dict[str, Any],
        response_status: int = 200,
    ) -> IdempotencyKeyRecord:
        """
        Flushes only: the key must commit together with the money movement, so
        a concurrent duplicate trips uq_idem_scope and its transaction rolls back.
        """
        row = IdempotencyKeyRecord(
            participant_id=participant_id,
            endpoint_key=endpoint_key,
            idem_key=idem_key,
            request_hash=req_hash,
            response_status=response_status,
            response_json=response_json,
        )
        db.add(row)
        db.flush()
        return row
