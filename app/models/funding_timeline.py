# app/models/funding_timeline.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, JSONDoc
from app.models.enums import Decision

LIVE_PAIR_PREDICATE = "is_accepted IN ('pending', 'accepted')"


class FundingTimeline(Base):
    """
    One staged-funding agreement between a startup and a funding agency.

    Stages and contingency forms are stored as whole JSON documents and are
    only ever replaced together, guarded by ``version``.
    """

    __tablename__ = "funding_timelines"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    startup_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    agency_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    proposed_by_role: Mapped[str] = mapped_column(String(32), nullable=False)

    is_accepted: Mapped[str] = mapped_column(
        String(16), nullable=False, default=Decision.pending.value
    )
    total_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)

    stages_json: Mapped[List[Dict[str, Any]]] = mapped_column(JSONDoc, nullable=False, default=list)
    contingency_forms_json: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONDoc, nullable=False, default=list
    )

    # optimistic concurrency token, bumped on every write
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("ix_funding_timelines_pair", "startup_id", "agency_id"),
        Index("ix_funding_timelines_agency", "agency_id"),
        # at most one pending or accepted timeline per startup/agency pair
        Index(
            "uq_funding_timelines_live_pair",
            "startup_id",
            "agency_id",
            unique=True,
            postgresql_where=text(LIVE_PAIR_PREDICATE),
            sqlite_where=text(LIVE_PAIR_PREDICATE),
        ),
    )
