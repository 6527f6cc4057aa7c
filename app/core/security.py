# app/core/security.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from app.core.config import get_settings

REQUIRED_CLAIMS = ("sub", "role")


def create_access_token(
    *,
    participant_id: str,
    role: str,
    display_name: Optional[str] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """
    Mint a bearer token in the identity provider's format.
    Used by the seed script and tests; production tokens come from the provider.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    ttl = timedelta(minutes=expires_minutes or settings.jwt_access_token_minutes)

    claims: Dict[str, Any] = {
        "sub": participant_id,
        "participant_id": participant_id,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + ttl).timestamp()),
    }
    if display_name:
        claims["display_name"] = display_name
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Dict[str, Any]:
    """Verified claims; raises JWTError on a bad signature, expiry or missing claims."""
    settings = get_settings()
    claims = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    missing = [c for c in REQUIRED_CLAIMS if not claims.get(c)]
    if missing:
        raise JWTError(f"Token missing claims: {missing}")
    return claims
