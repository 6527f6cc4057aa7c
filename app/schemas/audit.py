from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class AuditEntryView(BaseModel):
    action: str
    subjectType: str
    subjectId: str
    actorParticipantId: Optional[str] = None
    actorRole: Optional[str] = None
    requestId: Optional[str] = None
    payloadHash: str
    details: dict = Field(default_factory=dict)
    createdAt: Optional[str] = None


class AuditListResponse(BaseModel):
    subjectId: str
    count: int
    entries: List[AuditEntryView]
