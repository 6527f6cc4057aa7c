#app/core/auth_deps.py
from __future__ import annotations

import logging

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.security import decode_token
from app.db.session import get_db
from app.models.enums import ParticipantRole
from app.models.user import User
from app.policies.rbac import Principal

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=True)


def get_current_principal(
    request: Request,
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: Session = Depends(get_db),
) -> Principal:
    """
    Canonical authentication dependency.

    Guarantees:
    - JWT is valid and carries sub + role
    - the user exists, is active and holds the role the token claims
    - display_name comes from the user row (notifications show it)
    """

    try:
        claims = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")

    participant_id = str(claims.get("participant_id") or claims["sub"])

    try:
        role = ParticipantRole(claims["role"])
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid role in token.")

    user = db.get(User, participant_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="Unknown or inactive user.")
    if user.role != role.value:
        logger.warning("[auth] role mismatch user=%s token=%s stored=%s", participant_id, role.value, user.role)
        raise HTTPException(status_code=401, detail="Token role does not match user.")

    principal = Principal(
        participant_id=participant_id,
        role=role,
        display_name=user.display_name,
    )

    # Make principal available to downstream handlers and the access log
    request.state.principal = principal

    return principal
