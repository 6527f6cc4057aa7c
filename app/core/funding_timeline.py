# app/core/funding_timeline.py
"""
Funding timeline state machine.

Pure transitions over an immutable TimelineState value. Nothing here touches
the database: the service layer loads a row, converts it with
``TimelineState.from_json``, applies one transition and writes the returned
value back conditioned on the version it read.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from app.core.errors import (
    AlreadyDecidedError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from app.core.funding_stages import (
    DEFAULT_DISTRIBUTION_PCT,
    STAGE_LABELS,
    STAGE_ORDER,
    FundingStage,
)
from app.models.enums import Decision, StageStatus


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Invoice:
    identifier: str
    url: str

    def to_json(self) -> Dict[str, str]:
        return {"identifier": self.identifier, "url": self.url}


@dataclass(frozen=True)
class StageEntry:
    stage: FundingStage
    amount: int
    status: StageStatus = StageStatus.pending

    def to_json(self) -> Dict[str, Any]:
        return {
            "name": self.stage.value,
            "label": STAGE_LABELS[self.stage],
            "amount": self.amount,
            "status": self.status.value,
        }


@dataclass(frozen=True)
class ContingencyForm:
    stage_of_funding: FundingStage
    description: str
    funding_amount: int
    invoices: Tuple[Invoice, ...] = ()
    is_accepted: Decision = Decision.pending
    is_paid: bool = False
    created_at: Optional[str] = None
    decided_at: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        return {
            "stageOfFunding": self.stage_of_funding.value,
            "description": self.description,
            "fundingAmount": self.funding_amount,
            "invoices": [i.to_json() for i in self.invoices],
            "isAccepted": self.is_accepted.value,
            "isPaid": self.is_paid,
            "createdAt": self.created_at,
            "decidedAt": self.decided_at,
        }

    @classmethod
    def from_json(cls, raw: Mapping[str, Any]) -> "ContingencyForm":
        return cls(
            stage_of_funding=FundingStage(raw["stageOfFunding"]),
            description=raw.get("description") or "",
            funding_amount=int(raw["fundingAmount"]),
            invoices=tuple(
                Invoice(identifier=i["identifier"], url=i["url"])
                for i in raw.get("invoices") or []
            ),
            is_accepted=Decision(raw.get("isAccepted", Decision.pending.value)),
            is_paid=bool(raw.get("isPaid", False)),
            created_at=raw.get("createdAt"),
            decided_at=raw.get("decidedAt"),
        )


@dataclass(frozen=True)
class TimelineState:
    stages: Tuple[StageEntry, ...]
    is_accepted: Decision = Decision.pending
    contingency_forms: Tuple[ContingencyForm, ...] = ()

    def stage(self, key: FundingStage) -> StageEntry:
        return self.stages[STAGE_ORDER.index(key)]

    @property
    def total_amount(self) -> int:
        return sum(s.amount for s in self.stages)

    @property
    def disbursed_amount(self) -> int:
        staged = sum(s.amount for s in self.stages if s.status == StageStatus.completed)
        contingency = sum(f.funding_amount for f in self.contingency_forms if f.is_paid)
        return staged + contingency

    @property
    def pending_form_count(self) -> int:
        return sum(1 for f in self.contingency_forms if f.is_accepted == Decision.pending)

    def stages_json(self) -> List[Dict[str, Any]]:
        return [s.to_json() for s in self.stages]

    def forms_json(self) -> List[Dict[str, Any]]:
        return [f.to_json() for f in self.contingency_forms]

    @classmethod
    def from_json(
        cls,
        *,
        stages: Iterable[Mapping[str, Any]],
        is_accepted: str,
        contingency_forms: Iterable[Mapping[str, Any]],
    ) -> "TimelineState":
        return cls(
            stages=tuple(
                StageEntry(
                    stage=FundingStage(s["name"]),
                    amount=int(s["amount"]),
                    status=StageStatus(s["status"]),
                )
                for s in stages
            ),
            is_accepted=Decision(is_accepted),
            contingency_forms=tuple(ContingencyForm.from_json(f) for f in contingency_forms),
        )


# ─────────────────────────────────────────────
# CONSTRUCTION
# ─────────────────────────────────────────────

def parse_stage(key: Union[str, FundingStage]) -> FundingStage:
    try:
        return FundingStage(key)
    except ValueError:
        raise ValidationError(
            f"Unknown funding stage {key!r}.", field="stageOfFunding"
        )


def _is_amount(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def build_stages(
    *,
    total_amount: Optional[int] = None,
    stage_amounts: Optional[Mapping[str, int]] = None,
) -> Tuple[StageEntry, ...]:
    """
    Either split ``total_amount`` by the default distribution, or take explicit
    per-stage amounts. Integer split: each stage gets the floor of its share and
    the remainder lands on the last stage, so the stages always sum to the total.
    """
    if (total_amount is None) == (stage_amounts is None):
        raise ValidationError(
            "Provide exactly one of totalAmount or stageAmounts.", field="totalAmount"
        )

    if total_amount is not None:
        if not _is_amount(total_amount) or total_amount <= 0:
            raise ValidationError("totalAmount must be a positive integer.", field="totalAmount")
        amounts = [total_amount * DEFAULT_DISTRIBUTION_PCT[s] // 100 for s in STAGE_ORDER]
        amounts[-1] += total_amount - sum(amounts)
        return tuple(StageEntry(stage=s, amount=a) for s, a in zip(STAGE_ORDER, amounts))

    parsed: Dict[FundingStage, int] = {}
    for key, amount in stage_amounts.items():
        stage = parse_stage(key)
        if not _is_amount(amount) or amount < 0:
            raise ValidationError(
                f"Amount for {stage.value} must be a non-negative integer.", field="stageAmounts"
            )
        parsed[stage] = amount

    missing = [s.value for s in STAGE_ORDER if s not in parsed]
    if missing:
        raise ValidationError(f"Missing stage amounts: {missing}", field="stageAmounts")
    if sum(parsed.values()) <= 0:
        raise ValidationError("Stage amounts must not all be zero.", field="stageAmounts")

    return tuple(StageEntry(stage=s, amount=parsed[s]) for s in STAGE_ORDER)


def new_timeline(
    *,
    total_amount: Optional[int] = None,
    stage_amounts: Optional[Mapping[str, int]] = None,
) -> TimelineState:
    return TimelineState(stages=build_stages(total_amount=total_amount, stage_amounts=stage_amounts))


# ─────────────────────────────────────────────
# INVARIANTS
# ─────────────────────────────────────────────

def assert_invariants(timeline: TimelineState) -> None:
    if tuple(s.stage for s in timeline.stages) != STAGE_ORDER:
        raise InvalidStateError("Timeline stages are not in canonical order.")

    statuses = [s.status for s in timeline.stages]

    if timeline.is_accepted == Decision.rejected:
        if any(st in (StageStatus.active, StageStatus.completed) for st in statuses):
            raise InvalidStateError("Rejected timeline cannot have released stages.")
        return

    if timeline.is_accepted == Decision.pending:
        if any(st != StageStatus.pending for st in statuses):
            raise InvalidStateError("Stages cannot move before the timeline is accepted.")
        return

    if statuses.count(StageStatus.active) > 1:
        raise InvalidStateError("More than one stage is active.")

    # accepted: completed* (active)? pending*
    seen_open = False
    for st in statuses:
        if st == StageStatus.rejected:
            raise InvalidStateError("Accepted timeline cannot have rejected stages.")
        if st == StageStatus.completed and seen_open:
            raise InvalidStateError("Completed stage follows an open stage.")
        if st in (StageStatus.active, StageStatus.pending):
            if st == StageStatus.active and seen_open:
                raise InvalidStateError("Active stage follows a pending stage.")
            seen_open = True


# ─────────────────────────────────────────────
# STAGE LEDGER
# ─────────────────────────────────────────────

def get_active_stage(timeline: TimelineState) -> Optional[FundingStage]:
    for entry in timeline.stages:
        if entry.status == StageStatus.active:
            return entry.stage

    if timeline.is_accepted == Decision.accepted:
        for entry in timeline.stages:
            if entry.status == StageStatus.pending:
                return entry.stage

    return None


def advance_stage(timeline: TimelineState) -> TimelineState:
    if timeline.is_accepted != Decision.accepted:
        raise InvalidStateError("Timeline must be accepted before stages can advance.")

    current = get_active_stage(timeline)
    if current is None:
        raise InvalidStateError("All funding stages are already completed.")

    idx = STAGE_ORDER.index(current)
    stages = list(timeline.stages)
    stages[idx] = replace(stages[idx], status=StageStatus.completed)
    if idx + 1 < len(stages):
        stages[idx + 1] = replace(stages[idx + 1], status=StageStatus.active)

    out = replace(timeline, stages=tuple(stages))
    assert_invariants(out)
    return out


# ─────────────────────────────────────────────
# ACCEPTANCE GATE
# ─────────────────────────────────────────────

def accept_timeline(timeline: TimelineState) -> TimelineState:
    if timeline.is_accepted != Decision.pending:
        raise AlreadyDecidedError(f"Timeline is already {timeline.is_accepted.value}.")

    stages = list(timeline.stages)
    stages[0] = replace(stages[0], status=StageStatus.active)

    out = replace(timeline, is_accepted=Decision.accepted, stages=tuple(stages))
    assert_invariants(out)
    return out


def reject_timeline(timeline: TimelineState) -> TimelineState:
    if timeline.is_accepted != Decision.pending:
        raise AlreadyDecidedError(f"Timeline is already {timeline.is_accepted.value}.")

    stages = tuple(replace(s, status=StageStatus.rejected) for s in timeline.stages)
    out = replace(timeline, is_accepted=Decision.rejected, stages=stages)
    assert_invariants(out)
    return out


# ─────────────────────────────────────────────
# CONTINGENCY QUEUE
# ─────────────────────────────────────────────

def _coerce_invoice(raw: Union[Invoice, Mapping[str, Any]]) -> Invoice:
    if isinstance(raw, Invoice):
        return raw
    try:
        return Invoice(identifier=str(raw["identifier"]), url=str(raw["url"]))
    except (KeyError, TypeError):
        raise ValidationError("Each invoice needs an identifier and url.", field="invoices")


def file_contingency_form(
    timeline: TimelineState,
    *,
    stage_key: Union[str, FundingStage],
    description: str,
    amount: int,
    invoices: Iterable[Union[Invoice, Mapping[str, Any]]] = (),
    now_iso: Optional[str] = None,
) -> Tuple[TimelineState, ContingencyForm]:
    if timeline.is_accepted != Decision.accepted:
        raise NotEligibleError(
            "Contingency forms can only be filed against an accepted timeline."
        )

    stage = parse_stage(stage_key)

    if not description or not description.strip():
        raise ValidationError("description is required.", field="description")
    if not _is_amount(amount) or amount <= 0:
        raise ValidationError("fundingAmount must be a positive integer.", field="fundingAmount")

    form = ContingencyForm(
        stage_of_funding=stage,
        description=description.strip(),
        funding_amount=amount,
        invoices=tuple(_coerce_invoice(i) for i in invoices),
        created_at=now_iso or _now_iso(),
    )
    return replace(timeline, contingency_forms=timeline.contingency_forms + (form,)), form


def form_at(timeline: TimelineState, form_index: int) -> ContingencyForm:
    if not _is_amount(form_index) or not 0 <= form_index < len(timeline.contingency_forms):
        raise NotFoundError(f"Contingency form {form_index} not found.", field="formIndex")
    return timeline.contingency_forms[form_index]


def _with_form(timeline: TimelineState, form_index: int, form: ContingencyForm) -> TimelineState:
    forms = list(timeline.contingency_forms)
    forms[form_index] = form
    return replace(timeline, contingency_forms=tuple(forms))


def decide_contingency_form(
    timeline: TimelineState,
    form_index: int,
    decision: Union[str, Decision],
    *,
    now_iso: Optional[str] = None,
) -> TimelineState:
    try:
        decision = Decision(decision)
    except ValueError:
        raise ValidationError(f"Unknown decision {decision!r}.", field="decision")
    if decision == Decision.pending:
        raise ValidationError("Decision must be accepted or rejected.", field="decision")

    form = form_at(timeline, form_index)
    if form.is_accepted != Decision.pending:
        raise AlreadyDecidedError(
            f"Contingency form {form_index} is already {form.is_accepted.value}."
        )

    decided = replace(form, is_accepted=decision, decided_at=now_iso or _now_iso())
    return _with_form(timeline, form_index, decided)


def mark_contingency_paid(timeline: TimelineState, form_index: int) -> TimelineState:
    form = form_at(timeline, form_index)
    if form.is_accepted != Decision.accepted:
        raise NotEligibleError(f"Contingency form {form_index} has not been accepted.")
    if form.is_paid:
        raise AlreadyDecidedError(f"Contingency form {form_index} is already paid.")
    return _with_form(timeline, form_index, replace(form, is_paid=True))
