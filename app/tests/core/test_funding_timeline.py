from dataclasses import replace

import pytest

from app.core import funding_timeline as ft
from app.core.errors import (
    AlreadyDecidedError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from app.core.funding_stages import STAGE_ORDER, FundingStage
from app.models.enums import Decision, StageStatus


def accepted(total=1_000_000):
    return ft.accept_timeline(ft.new_timeline(total_amount=total))


def statuses(state):
    return [s.status for s in state.stages]


# ─────────────────────────────────────────────
# Construction
# ─────────────────────────────────────────────

def test_default_distribution_splits_total():
    state = ft.new_timeline(total_amount=1_000_000)

    assert [s.stage for s in state.stages] == list(STAGE_ORDER)
    assert [s.amount for s in state.stages] == [100_000, 200_000, 200_000, 200_000, 200_000, 100_000]
    assert state.is_accepted == Decision.pending
    assert all(st == StageStatus.pending for st in statuses(state))


def test_default_distribution_remainder_goes_to_last_stage():
    state = ft.new_timeline(total_amount=1_003)

    assert state.total_amount == 1_003
    assert state.stage(FundingStage.IPO).amount == 1_003 - sum(s.amount for s in state.stages[:-1])


def test_explicit_stage_amounts_need_every_stage():
    amounts = {s.value: 10 for s in STAGE_ORDER}
    state = ft.new_timeline(stage_amounts=amounts)
    assert state.total_amount == 60

    del amounts["ipo"]
    with pytest.raises(ValidationError) as exc:
        ft.new_timeline(stage_amounts=amounts)
    assert exc.value.field == "stageAmounts"


def test_unknown_stage_key_is_validation_error():
    amounts = {s.value: 10 for s in STAGE_ORDER}
    amounts["seriesZ"] = 5
    with pytest.raises(ValidationError):
        ft.new_timeline(stage_amounts=amounts)


@pytest.mark.parametrize("total", [0, -5])
def test_total_must_be_positive(total):
    with pytest.raises(ValidationError):
        ft.new_timeline(total_amount=total)


def test_exactly_one_amount_source():
    with pytest.raises(ValidationError):
        ft.new_timeline()
    with pytest.raises(ValidationError):
        ft.new_timeline(total_amount=10, stage_amounts={s.value: 1 for s in STAGE_ORDER})


def test_json_round_trip_preserves_state():
    state, _ = ft.file_contingency_form(
        accepted(),
        stage_key="seedFunding",
        description="Lab equipment",
        amount=50_000,
        invoices=[{"identifier": "inv-1", "url": "/files/invoices/inv-1"}],
    )
    again = ft.TimelineState.from_json(
        stages=state.stages_json(),
        is_accepted=state.is_accepted.value,
        contingency_forms=state.forms_json(),
    )
    assert again == state


# ─────────────────────────────────────────────
# Acceptance gate
# ─────────────────────────────────────────────

def test_accept_activates_first_stage():
    state = accepted()

    assert state.is_accepted == Decision.accepted
    assert statuses(state)[0] == StageStatus.active
    assert all(st == StageStatus.pending for st in statuses(state)[1:])
    assert ft.get_active_stage(state) == FundingStage.PRE_SEED


def test_reject_marks_every_stage_rejected():
    state = ft.reject_timeline(ft.new_timeline(total_amount=600))

    assert state.is_accepted == Decision.rejected
    assert all(st == StageStatus.rejected for st in statuses(state))
    assert ft.get_active_stage(state) is None


def test_reject_checks_invariants_of_result():
    state = ft.new_timeline(total_amount=600)
    shuffled = replace(state, stages=tuple(reversed(state.stages)))

    with pytest.raises(InvalidStateError):
        ft.reject_timeline(shuffled)


def test_gate_decides_once():
    state = accepted()
    with pytest.raises(AlreadyDecidedError):
        ft.accept_timeline(state)
    with pytest.raises(AlreadyDecidedError):
        ft.reject_timeline(state)


def test_pending_timeline_has_no_active_stage():
    assert ft.get_active_stage(ft.new_timeline(total_amount=600)) is None


def test_accepted_without_explicit_active_falls_back_to_first_pending():
    state = replace(ft.new_timeline(total_amount=600), is_accepted=Decision.accepted)
    assert ft.get_active_stage(state) == FundingStage.PRE_SEED


# ─────────────────────────────────────────────
# Stage ledger
# ─────────────────────────────────────────────

def test_advance_completes_active_and_activates_next():
    state = ft.advance_stage(accepted())

    assert statuses(state)[:3] == [StageStatus.completed, StageStatus.active, StageStatus.pending]
    assert ft.get_active_stage(state) == FundingStage.SEED
    assert state.disbursed_amount == 100_000


def test_advance_through_all_stages_then_fails():
    state = accepted()
    for _ in STAGE_ORDER:
        state = ft.advance_stage(state)

    assert all(st == StageStatus.completed for st in statuses(state))
    assert ft.get_active_stage(state) is None
    assert state.disbursed_amount == state.total_amount

    with pytest.raises(InvalidStateError):
        ft.advance_stage(state)


def test_advance_requires_acceptance():
    with pytest.raises(InvalidStateError):
        ft.advance_stage(ft.new_timeline(total_amount=600))


def test_invariants_reject_two_active_stages():
    state = accepted()
    stages = list(state.stages)
    stages[2] = replace(stages[2], status=StageStatus.active)

    with pytest.raises(InvalidStateError):
        ft.assert_invariants(replace(state, stages=tuple(stages)))


def test_invariants_reject_movement_before_acceptance():
    state = ft.new_timeline(total_amount=600)
    stages = list(state.stages)
    stages[0] = replace(stages[0], status=StageStatus.active)

    with pytest.raises(InvalidStateError):
        ft.assert_invariants(replace(state, stages=tuple(stages)))


# ─────────────────────────────────────────────
# Contingency queue
# ─────────────────────────────────────────────

@pytest.mark.parametrize(
    "gate",
    [
        lambda: ft.new_timeline(total_amount=1_000_000),
        lambda: ft.reject_timeline(ft.new_timeline(total_amount=1_000_000)),
    ],
    ids=["pending", "rejected"],
)
def test_filing_outside_accepted_timeline_is_not_eligible(gate):
    with pytest.raises(NotEligibleError):
        ft.file_contingency_form(
            gate(),
            stage_key="seedFunding",
            description="Prototype",
            amount=50_000,
        )


def test_filing_appends_pending_form():
    state, form = ft.file_contingency_form(
        accepted(), stage_key="seedFunding", description="  Prototype  ", amount=50_000
    )

    assert len(state.contingency_forms) == 1
    assert form.description == "Prototype"
    assert form.is_accepted == Decision.pending
    assert form.is_paid is False
    assert state.pending_form_count == 1


@pytest.mark.parametrize(
    "kwargs, field",
    [
        ({"stage_key": "seriesZ", "description": "x", "amount": 1}, "stageOfFunding"),
        ({"stage_key": "seriesA", "description": "   ", "amount": 1}, "description"),
        ({"stage_key": "seriesA", "description": "x", "amount": 0}, "fundingAmount"),
    ],
)
def test_filing_validates_fields(kwargs, field):
    with pytest.raises(ValidationError) as exc:
        ft.file_contingency_form(accepted(), **kwargs)
    assert exc.value.field == field


def test_decide_form_once():
    state, _ = ft.file_contingency_form(
        accepted(), stage_key="seedFunding", description="Prototype", amount=50_000
    )
    state = ft.decide_contingency_form(state, 0, "accepted")

    assert state.contingency_forms[0].is_accepted == Decision.accepted
    assert state.contingency_forms[0].decided_at is not None
    assert state.pending_form_count == 0

    with pytest.raises(AlreadyDecidedError):
        ft.decide_contingency_form(state, 0, Decision.accepted)


def test_decide_form_bad_index_and_decision():
    state, _ = ft.file_contingency_form(
        accepted(), stage_key="seedFunding", description="Prototype", amount=50_000
    )
    with pytest.raises(NotFoundError):
        ft.decide_contingency_form(state, 3, Decision.accepted)
    with pytest.raises(ValidationError):
        ft.decide_contingency_form(state, 0, "maybe")
    with pytest.raises(ValidationError):
        ft.decide_contingency_form(state, 0, Decision.pending)


def test_mark_paid_requires_accepted_form_and_happens_once():
    state, _ = ft.file_contingency_form(
        accepted(), stage_key="seedFunding", description="Prototype", amount=50_000
    )
    with pytest.raises(NotEligibleError):
        ft.mark_contingency_paid(state, 0)

    state = ft.mark_contingency_paid(ft.decide_contingency_form(state, 0, "accepted"), 0)
    assert state.contingency_forms[0].is_paid is True
    assert state.disbursed_amount == 50_000

    with pytest.raises(AlreadyDecidedError):
        ft.mark_contingency_paid(state, 0)


def test_forms_do_not_touch_stage_ledger():
    before = accepted()
    after, _ = ft.file_contingency_form(
        before, stage_key="ipo", description="Listing fees", amount=5
    )
    after = ft.decide_contingency_form(after, 0, "rejected")

    assert after.stages == before.stages
