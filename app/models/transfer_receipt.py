# app/models/transfer_receipt.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict

from sqlalchemy import BigInteger, DateTime, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONDoc


class TransferReceipt(Base):
    __tablename__ = "transfer_receipts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    reference: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    receiver_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)

    sender_balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    receiver_balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    metadata_json: Mapped[Dict[str, Any]] = mapped_column(JSONDoc, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_transfer_receipts_sender", "sender_id"),
        Index("ix_transfer_receipts_receiver", "receiver_id"),
    )
