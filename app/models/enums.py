#app/models/enums.py
from __future__ import annotations
from enum import Enum


class ParticipantRole(str, Enum):
    STARTUP = "STARTUP"
    FUNDING_AGENCY = "FUNDING_AGENCY"
    MENTOR = "MENTOR"
    RESEARCHER = "RESEARCHER"
    POLICY_MAKER = "POLICY_MAKER"
    IPR_PROFESSIONAL = "IPR_PROFESSIONAL"
    ADMIN = "ADMIN"


class Decision(str, Enum):
    # acceptance gate, used by timelines and contingency forms
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"


class StageStatus(str, Enum):
    pending = "pending"
    active = "active"
    completed = "completed"
    rejected = "rejected"


class EntryType(str, Enum):
    credit = "credit"
    debit = "debit"


class TransferCategory(str, Enum):
    deposit = "deposit"
    transfer = "transfer"
    funding = "funding"
    contingency_funding = "contingency_funding"
    research_purchase = "research_purchase"
    research_earning = "research_earning"
