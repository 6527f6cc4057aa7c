from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.primitives import NonNegMoney
from app.schemas.wallet import ReceiptView


class PaperCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=512)
    price: NonNegMoney = 0


class PaperView(BaseModel):
    id: str
    researcherId: str
    title: str
    price: int
    createdAt: Optional[str] = None


class PaperListResponse(BaseModel):
    count: int
    papers: List[PaperView]


class PurchaseResponse(BaseModel):
    success: bool = True
    paperId: str
    balance: int
    receipt: Optional[ReceiptView] = None
