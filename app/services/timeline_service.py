# app/services/timeline_service.py
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core import funding_timeline as ft
from app.core.errors import (
    ConflictError,
    InvalidStateError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from app.core.funding_stages import STAGE_LABELS
from app.models.enums import Decision, ParticipantRole, TransferCategory
from app.models.funding_timeline import FundingTimeline
from app.models.transfer_receipt import TransferReceipt
from app.models.user import User
from app.policies.rbac import (
    ACTION_DECIDE_CONTINGENCY,
    ACTION_DECIDE_TIMELINE,
    ACTION_FILE_CONTINGENCY,
    ACTION_PAY_CONTINGENCY,
    ACTION_PAY_STAGE,
    ACTION_PROPOSE_TIMELINE,
    Principal,
    require_action,
)
from app.services.notification_service import NotificationService
from app.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

LIVE_PAIR_MESSAGE = "A pending or accepted timeline already exists for this startup and agency."


def _now():
    return datetime.now(timezone.utc)


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


# Projection action names, as the dashboards key their buttons
VIEW_ACCEPT = "accept"
VIEW_REJECT = "reject"
VIEW_PAY = "pay"
VIEW_FILE_FORM = "fileForm"
VIEW_DECIDE_FORMS = "decideForms"
VIEW_PAY_FORMS = "payForms"


class TimelineService:
    """
    Persistence and orchestration for funding timelines.

    Every mutation is: load row -> TimelineState -> pure transition ->
    version-conditioned UPDATE. A request that read a stale version updates
    zero rows and fails with ConflictError instead of overwriting.
    """

    def __init__(
        self,
        wallets: Optional[WalletService] = None,
        notifications: Optional[NotificationService] = None,
    ):
        self.wallets = wallets or WalletService()
        self.notifications = notifications or NotificationService()

    # ─────────────────────────────────────────────
    # INTERNAL READ HELPERS
    # ─────────────────────────────────────────────

    def get(self, db: Session, timeline_id: uuid.UUID) -> FundingTimeline:
        row = db.get(FundingTimeline, timeline_id)
        if not row:
            raise NotFoundError("Timeline not found.", field="timelineId")
        return row

    def state_of(self, row: FundingTimeline) -> ft.TimelineState:
        return ft.TimelineState.from_json(
            stages=row.stages_json,
            is_accepted=row.is_accepted,
            contingency_forms=row.contingency_forms_json,
        )

    def _party_role(self, row: FundingTimeline, principal: Principal) -> Optional[ParticipantRole]:
        if principal.participant_id == row.startup_id and principal.role == ParticipantRole.STARTUP:
            return ParticipantRole.STARTUP
        if principal.participant_id == row.agency_id and principal.role == ParticipantRole.FUNDING_AGENCY:
            return ParticipantRole.FUNDING_AGENCY
        return None

    def get_for_viewer(self, db: Session, timeline_id: uuid.UUID, principal: Principal) -> FundingTimeline:
        row = self.get(db, timeline_id)
        if principal.role != ParticipantRole.ADMIN and self._party_role(row, principal) is None:
            raise PermissionError("Only the startup, the funding agency or an admin may view this timeline.")
        return row

    def _require_party(
        self,
        row: FundingTimeline,
        principal: Principal,
        role: ParticipantRole,
        action: str,
    ) -> None:
        require_action(principal, action)
        if self._party_role(row, principal) != role:
            raise PermissionError(f"Only this timeline's {role.value} may perform {action}.")

    def list_for_principal(self, db: Session, principal: Principal) -> List[FundingTimeline]:
        q = select(FundingTimeline)
        if principal.role == ParticipantRole.STARTUP:
            q = q.where(FundingTimeline.startup_id == principal.participant_id)
        elif principal.role == ParticipantRole.FUNDING_AGENCY:
            q = q.where(FundingTimeline.agency_id == principal.participant_id)
        elif principal.role != ParticipantRole.ADMIN:
            return []
        return db.execute(q.order_by(FundingTimeline.created_at.desc())).scalars().all()

    # ─────────────────────────────────────────────
    # WRITE PATH
    # ─────────────────────────────────────────────

    def _write(
        self,
        db: Session,
        row: FundingTimeline,
        read_version: int,
        state: ft.TimelineState,
        *,
        decided: bool = False,
    ) -> FundingTimeline:
        """
        Whole-aggregate replace, conditioned on the version read.
        Flushes only; the caller owns the commit.
        """
        values: Dict[str, Any] = {
            "stages_json": state.stages_json(),
            "contingency_forms_json": state.forms_json(),
            "is_accepted": state.is_accepted.value,
            "total_amount": state.total_amount,
            "version": read_version + 1,
            "updated_at": _now(),
        }
        if decided:
            values["decided_at"] = _now()

        res = db.execute(
            update(FundingTimeline)
            .where(FundingTimeline.id == row.id, FundingTimeline.version == read_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            logger.warning(
                "[timeline] stale write timeline=%s read_version=%s", row.id, read_version
            )
            raise ConflictError("Timeline was modified concurrently; reload and retry.")

        db.flush()
        db.refresh(row)
        return row

    def _finish(self, db: Session, row: FundingTimeline, commit: bool) -> FundingTimeline:
        if commit:
            db.commit()
            db.refresh(row)
        return row

    def _notify(self, db: Session, *, user_id: str, actor: Principal, message: str) -> None:
        self.notifications.add(
            db,
            user_id=user_id,
            name=actor.display_name,
            role=actor.role.value,
            message=message,
        )

    def _counterparty(self, row: FundingTimeline, principal: Principal) -> str:
        return row.agency_id if principal.participant_id == row.startup_id else row.startup_id

    # ─────────────────────────────────────────────
    # PROPOSAL
    # ─────────────────────────────────────────────

    def _has_live_timeline(self, db: Session, startup_id: str, agency_id: str) -> bool:
        return db.execute(
            select(FundingTimeline.id).where(
                FundingTimeline.startup_id == startup_id,
                FundingTimeline.agency_id == agency_id,
                or_(
                    FundingTimeline.is_accepted == Decision.pending.value,
                    FundingTimeline.is_accepted == Decision.accepted.value,
                ),
            )
        ).first() is not None

    def propose(
        self,
        db: Session,
        *,
        principal: Principal,
        counterparty_id: str,
        total_amount: Optional[int] = None,
        stage_amounts: Optional[Mapping[str, int]] = None,
    ) -> FundingTimeline:
        require_action(principal, ACTION_PROPOSE_TIMELINE)

        counterparty = db.get(User, counterparty_id)
        if not counterparty or not counterparty.is_active:
            raise NotFoundError(f"User {counterparty_id} not found.", field="counterpartyId")

        expected = (
            ParticipantRole.FUNDING_AGENCY
            if principal.role == ParticipantRole.STARTUP
            else ParticipantRole.STARTUP
        )
        if counterparty.role != expected.value:
            raise ValidationError(
                f"Counterparty must be a {expected.value}.", field="counterpartyId"
            )

        if principal.role == ParticipantRole.STARTUP:
            startup_id, agency_id = principal.participant_id, counterparty_id
        else:
            startup_id, agency_id = counterparty_id, principal.participant_id

        if self._has_live_timeline(db, startup_id, agency_id):
            raise NotEligibleError(LIVE_PAIR_MESSAGE)

        state = ft.new_timeline(total_amount=total_amount, stage_amounts=stage_amounts)

        row = FundingTimeline(
            startup_id=startup_id,
            agency_id=agency_id,
            proposed_by_role=principal.role.value,
            is_accepted=state.is_accepted.value,
            total_amount=state.total_amount,
            stages_json=state.stages_json(),
            contingency_forms_json=[],
            version=1,
        )
        db.add(row)
        try:
            db.flush()
        except IntegrityError:
            # a concurrent proposal for the same pair won the live-pair index
            db.rollback()
            logger.info(
                "[timeline] live pair conflict startup=%s agency=%s", startup_id, agency_id
            )
            raise NotEligibleError(LIVE_PAIR_MESSAGE)

        self._notify(
            db,
            user_id=counterparty_id,
            actor=principal,
            message=f"proposed a funding timeline of {state.total_amount}.",
        )
        db.commit()
        db.refresh(row)

        logger.info(
            "[timeline] proposed id=%s startup=%s agency=%s total=%s by=%s",
            row.id,
            startup_id,
            agency_id,
            state.total_amount,
            principal.role.value,
        )
        return row

    # ─────────────────────────────────────────────
    # ACCEPTANCE GATE
    # ─────────────────────────────────────────────

    def _decide_timeline(
        self,
        db: Session,
        *,
        timeline_id: uuid.UUID,
        principal: Principal,
        accept: bool,
    ) -> FundingTimeline:
        require_action(principal, ACTION_DECIDE_TIMELINE)
        row = self.get(db, timeline_id)

        if self._party_role(row, principal) is None:
            raise PermissionError("Only a party to this timeline may decide it.")
        if principal.role.value == row.proposed_by_role:
            raise PermissionError("The proposing party cannot decide its own timeline.")

        read_version = row.version
        state = self.state_of(row)
        new_state = ft.accept_timeline(state) if accept else ft.reject_timeline(state)

        try:
            self._write(db, row, read_version, new_state, decided=True)
            self._notify(
                db,
                user_id=self._counterparty(row, principal),
                actor=principal,
                message="accepted your funding timeline." if accept else "rejected your funding timeline.",
            )
            self._finish(db, row, commit=True)
        except Exception:
            db.rollback()
            raise

        logger.info("[timeline] %s id=%s by=%s", new_state.is_accepted.value, row.id, principal.participant_id)
        return row

    def accept(self, db: Session, *, timeline_id: uuid.UUID, principal: Principal) -> FundingTimeline:
        return self._decide_timeline(db, timeline_id=timeline_id, principal=principal, accept=True)

    def reject(self, db: Session, *, timeline_id: uuid.UUID, principal: Principal) -> FundingTimeline:
        return self._decide_timeline(db, timeline_id=timeline_id, principal=principal, accept=False)

    # ─────────────────────────────────────────────
    # PAYMENT TRIGGER
    # ─────────────────────────────────────────────

    def process_payment(
        self,
        db: Session,
        *,
        timeline_id: uuid.UUID,
        principal: Principal,
        commit: bool = True,
    ) -> Tuple[FundingTimeline, Optional[TransferReceipt], str]:
        """
        Pay the active stage agency -> startup, then advance it.

        Transfer and stage write share one transaction: if the write loses
        the version race, the transfer is rolled back with it.
        Returns (timeline, receipt, paid stage key). Zero-amount stages
        advance without a receipt.
        """
        row = self.get(db, timeline_id)
        self._require_party(row, principal, ParticipantRole.FUNDING_AGENCY, ACTION_PAY_STAGE)

        read_version = row.version
        state = self.state_of(row)

        if state.is_accepted != Decision.accepted:
            raise NotEligibleError("Timeline must be accepted before payments can be made.")
        stage = ft.get_active_stage(state)
        if stage is None:
            raise InvalidStateError("All funding stages are already completed.")

        amount = state.stage(stage).amount
        new_state = ft.advance_stage(state)

        try:
            receipt = None
            if amount > 0:
                receipt = self.wallets.transfer(
                    db,
                    sender_id=row.agency_id,
                    receiver_id=row.startup_id,
                    amount=amount,
                    category=TransferCategory.funding,
                    description=f"{STAGE_LABELS[stage]} funding sent to startup",
                    credit_description=f"{STAGE_LABELS[stage]} funding received",
                    metadata={"timelineId": str(row.id), "stage": stage.value},
                    commit=False,
                )
            self._write(db, row, read_version, new_state)
            self._notify(
                db,
                user_id=row.startup_id,
                actor=principal,
                message=f"released {amount} for the {STAGE_LABELS[stage]} stage.",
            )
            self._finish(db, row, commit)
        except Exception:
            db.rollback()
            raise

        logger.info(
            "[timeline] stage paid id=%s stage=%s amount=%s next=%s",
            row.id,
            stage.value,
            amount,
            ft.get_active_stage(new_state),
        )
        return row, receipt, stage.value

    # ─────────────────────────────────────────────
    # CONTINGENCY QUEUE
    # ─────────────────────────────────────────────

    def file_contingency_form(
        self,
        db: Session,
        *,
        timeline_id: uuid.UUID,
        principal: Principal,
        stage_key: str,
        description: str,
        amount: int,
        invoices: Iterable[Union[ft.Invoice, Mapping[str, Any]]] = (),
    ) -> Tuple[FundingTimeline, int]:
        row = self.get(db, timeline_id)
        self._require_party(row, principal, ParticipantRole.STARTUP, ACTION_FILE_CONTINGENCY)

        read_version = row.version
        new_state, form = ft.file_contingency_form(
            self.state_of(row),
            stage_key=stage_key,
            description=description,
            amount=amount,
            invoices=invoices,
        )
        form_index = len(new_state.contingency_forms) - 1

        try:
            self._write(db, row, read_version, new_state)
            self._notify(
                db,
                user_id=row.agency_id,
                actor=principal,
                message=(
                    f"filed a contingency request of {form.funding_amount} "
                    f"for the {STAGE_LABELS[form.stage_of_funding]} stage."
                ),
            )
            self._finish(db, row, commit=True)
        except Exception:
            db.rollback()
            raise

        logger.info(
            "[timeline] contingency filed id=%s index=%s stage=%s amount=%s",
            row.id,
            form_index,
            form.stage_of_funding.value,
            form.funding_amount,
        )
        return row, form_index

    def decide_contingency_form(
        self,
        db: Session,
        *,
        timeline_id: uuid.UUID,
        principal: Principal,
        form_index: int,
        decision: Union[str, Decision],
    ) -> FundingTimeline:
        """
        Approval record only. Money for an accepted form moves through
        pay_contingency_form.
        """
        row = self.get(db, timeline_id)
        self._require_party(row, principal, ParticipantRole.FUNDING_AGENCY, ACTION_DECIDE_CONTINGENCY)

        read_version = row.version
        new_state = ft.decide_contingency_form(self.state_of(row), form_index, decision)
        decided = new_state.contingency_forms[form_index]

        try:
            self._write(db, row, read_version, new_state)
            self._notify(
                db,
                user_id=row.startup_id,
                actor=principal,
                message=f"{decided.is_accepted.value} your contingency request #{form_index}.",
            )
            self._finish(db, row, commit=True)
        except Exception:
            db.rollback()
            raise

        logger.info(
            "[timeline] contingency %s id=%s index=%s", decided.is_accepted.value, row.id, form_index
        )
        return row

    def pay_contingency_form(
        self,
        db: Session,
        *,
        timeline_id: uuid.UUID,
        principal: Principal,
        form_index: int,
        commit: bool = True,
    ) -> Tuple[FundingTimeline, TransferReceipt]:
        row = self.get(db, timeline_id)
        self._require_party(row, principal, ParticipantRole.FUNDING_AGENCY, ACTION_PAY_CONTINGENCY)

        read_version = row.version
        state = self.state_of(row)
        new_state = ft.mark_contingency_paid(state, form_index)
        form = state.contingency_forms[form_index]

        try:
            receipt = self.wallets.transfer(
                db,
                sender_id=row.agency_id,
                receiver_id=row.startup_id,
                amount=form.funding_amount,
                category=TransferCategory.contingency_funding,
                description=f"Contingency funding #{form_index} sent to startup",
                credit_description=f"Contingency funding #{form_index} received",
                metadata={
                    "timelineId": str(row.id),
                    "formIndex": form_index,
                    "stage": form.stage_of_funding.value,
                },
                commit=False,
            )
            self._write(db, row, read_version, new_state)
            self._notify(
                db,
                user_id=row.startup_id,
                actor=principal,
                message=f"paid {form.funding_amount} for contingency request #{form_index}.",
            )
            self._finish(db, row, commit)
        except Exception:
            db.rollback()
            raise

        logger.info(
            "[timeline] contingency paid id=%s index=%s amount=%s", row.id, form_index, form.funding_amount
        )
        return row, receipt

    # ─────────────────────────────────────────────
    # REVIEW PROJECTION
    # ─────────────────────────────────────────────

    def available_actions(self, row: FundingTimeline, principal: Principal) -> List[str]:
        state = self.state_of(row)
        party = self._party_role(row, principal)
        actions: List[str] = []

        if party is None:
            return actions

        if state.is_accepted == Decision.pending and party.value != row.proposed_by_role:
            actions += [VIEW_ACCEPT, VIEW_REJECT]

        if state.is_accepted != Decision.accepted:
            return actions

        if party == ParticipantRole.STARTUP:
            actions.append(VIEW_FILE_FORM)
        else:
            if ft.get_active_stage(state) is not None:
                actions.append(VIEW_PAY)
            if state.pending_form_count:
                actions.append(VIEW_DECIDE_FORMS)
            if any(f.is_accepted == Decision.accepted and not f.is_paid for f in state.contingency_forms):
                actions.append(VIEW_PAY_FORMS)
        return actions

    def projection(self, row: FundingTimeline, principal: Principal) -> Dict[str, Any]:
        state = self.state_of(row)
        active = ft.get_active_stage(state)
        return {
            "id": str(row.id),
            "startupId": row.startup_id,
            "agencyId": row.agency_id,
            "proposedBy": row.proposed_by_role,
            "isAccepted": state.is_accepted.value,
            "totalAmount": state.total_amount,
            "disbursedAmount": state.disbursed_amount,
            "activeStage": active.value if active else None,
            "stages": state.stages_json(),
            "contingencyForms": [
                {"index": i, **f.to_json()} for i, f in enumerate(state.contingency_forms)
            ],
            "pendingFormCount": state.pending_form_count,
            "version": row.version,
            "viewerRole": principal.role.value,
            "actions": self.available_actions(row, principal),
            "createdAt": _iso(row.created_at),
            "updatedAt": _iso(row.updated_at),
            "decidedAt": _iso(row.decided_at),
        }
