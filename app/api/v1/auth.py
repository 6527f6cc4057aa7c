#app/api/v1/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.auth_deps import get_current_principal
from app.policies.rbac import Principal, allowed_actions

router = APIRouter(prefix="/auth")


@router.get("/me")
def get_me(principal: Principal = Depends(get_current_principal)):
    return {
        "participant_id": principal.participant_id,
        "role": principal.role.value,
        "display_name": principal.display_name,
        "actions": sorted(allowed_actions(principal.role)),
    }
