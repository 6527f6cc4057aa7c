from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import DateTime, Index, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONDoc


class IdempotencyKeyRecord(Base):
    """
    Stores the response of a money-moving POST so a repeated Idempotency-Key
    replays it instead of moving money twice.

    Scope: (participant_id, endpoint_key, idem_key) must be unique.
    """
    __tablename__ = "idempotency_key_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    participant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    endpoint_key: Mapped[str] = mapped_column(String(160), nullable=False)  # e.g. "POST:/api/v1/wallet/transfer"
    idem_key: Mapped[str] = mapped_column(String(128), nullable=False)

    request_hash: Mapped[str] = mapped_column(String(128), nullable=False)

    response_status: Mapped[int] = mapped_column(nullable=False, default=200)
    response_json: Mapped[Dict[str, Any]] = mapped_column(JSONDoc, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("participant_id", "endpoint_key", "idem_key", name="uq_idem_scope"),
        Index("ix_idem_lookup", "participant_id", "endpoint_key"),
    )
