from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from app.schemas.primitives import Money, UserId


class TransferRequest(BaseModel):
    receiverId: UserId
    amount: Money
    description: Optional[str] = Field(default=None, max_length=256)


class DepositRequest(BaseModel):
    amount: Money


class ReceiptView(BaseModel):
    reference: str
    senderId: str
    receiverId: str
    amount: int
    category: str
    senderBalance: int
    receiverBalance: int
    createdAt: Optional[str] = None


class TransferResponse(BaseModel):
    success: bool = True
    balance: int
    receipt: ReceiptView


class WalletEntryView(BaseModel):
    seq: int
    type: str
    category: str
    amount: int
    balanceAfter: int
    reference: str
    description: str
    counterpartyId: Optional[str] = None
    createdAt: Optional[str] = None


class BalanceResponse(BaseModel):
    userId: str
    balance: int
    transactions: List[WalletEntryView] = Field(default_factory=list)


class DepositResponse(BaseModel):
    success: bool = True
    balance: int
    transaction: WalletEntryView


class ChainVerifyResponse(BaseModel):
    userId: str
    valid: bool
