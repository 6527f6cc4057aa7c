#app/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Set

from app.models.enums import ParticipantRole


@dataclass(frozen=True)
class Principal:
    participant_id: str
    role: ParticipantRole
    display_name: str


# --- Core action constants ---
ACTION_PROPOSE_TIMELINE = "PROPOSE_TIMELINE"
ACTION_DECIDE_TIMELINE = "DECIDE_TIMELINE"
ACTION_PAY_STAGE = "PAY_STAGE"
ACTION_FILE_CONTINGENCY = "FILE_CONTINGENCY"
ACTION_DECIDE_CONTINGENCY = "DECIDE_CONTINGENCY"
ACTION_PAY_CONTINGENCY = "PAY_CONTINGENCY"
ACTION_PUBLISH_PAPER = "PUBLISH_PAPER"
ACTION_VIEW_AUDIT = "VIEW_AUDIT"


def allowed_actions(role: ParticipantRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt.
    Whether the attempt succeeds still depends on timeline ownership and state.
    """

    if role == ParticipantRole.STARTUP:
        return {ACTION_PROPOSE_TIMELINE, ACTION_DECIDE_TIMELINE, ACTION_FILE_CONTINGENCY}

    if role == ParticipantRole.FUNDING_AGENCY:
        return {
            ACTION_PROPOSE_TIMELINE,
            ACTION_DECIDE_TIMELINE,
            ACTION_PAY_STAGE,
            ACTION_DECIDE_CONTINGENCY,
            ACTION_PAY_CONTINGENCY,
        }

    if role == ParticipantRole.RESEARCHER:
        return {ACTION_PUBLISH_PAPER}

    if role == ParticipantRole.ADMIN:
        return {ACTION_VIEW_AUDIT}

    return set()


def require_action(principal: Principal, action: str) -> None:
    if action not in allowed_actions(principal.role):
        raise PermissionError(
            f"Role {principal.role.value} not permitted for action {action}."
        )
