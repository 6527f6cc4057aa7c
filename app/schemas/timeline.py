from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from app.core.funding_stages import FundingStage
from app.schemas.primitives import Money, NonNegMoney, UserId
from app.schemas.wallet import ReceiptView


class TimelineProposeRequest(BaseModel):
    """
    Either a total split by the default distribution (10/20/20/20/20/10 %)
    or explicit amounts for all six stages.
    """
    counterpartyId: UserId
    totalAmount: Optional[Money] = None
    stageAmounts: Optional[Dict[FundingStage, NonNegMoney]] = None

    @model_validator(mode="after")
    def _one_amount_source(self):
        if (self.totalAmount is None) == (self.stageAmounts is None):
            raise ValueError("Provide exactly one of totalAmount or stageAmounts.")
        return self


class ContingencyDecisionRequest(BaseModel):
    formIndex: int = Field(..., ge=0)


class InvoiceView(BaseModel):
    identifier: str
    url: str


class StageView(BaseModel):
    name: str
    label: str
    amount: int
    status: str


class ContingencyFormView(BaseModel):
    index: int
    stageOfFunding: str
    description: str
    fundingAmount: int
    invoices: List[InvoiceView] = Field(default_factory=list)
    isAccepted: str
    isPaid: bool = False
    createdAt: Optional[str] = None
    decidedAt: Optional[str] = None


class TimelineView(BaseModel):
    id: str
    startupId: str
    agencyId: str
    proposedBy: str
    isAccepted: str
    totalAmount: int
    disbursedAmount: int
    activeStage: Optional[str] = None
    stages: List[StageView]
    contingencyForms: List[ContingencyFormView] = Field(default_factory=list)
    pendingFormCount: int = 0
    version: int
    viewerRole: str
    actions: List[str] = Field(default_factory=list)
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None
    decidedAt: Optional[str] = None


class TimelineListResponse(BaseModel):
    count: int
    timelines: List[TimelineView]


class FormFiledResponse(BaseModel):
    formIndex: int
    timeline: TimelineView


class PaymentResponse(BaseModel):
    paidStage: Optional[str] = None
    paidFormIndex: Optional[int] = None
    receipt: Optional[ReceiptView] = None
    timeline: TimelineView
