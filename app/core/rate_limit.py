from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request

from app.core.auth_deps import get_current_principal
from app.core.config import get_settings
from app.policies.rbac import Principal


@dataclass
class Bucket:
    tokens: float
    last_ts: float


class InMemoryRateLimiter:
    """
    Token bucket:
      capacity tokens; refill rate tokens/sec.

    Keyed by (participant_id, route_key). Process-local: each worker keeps
    its own buckets.
    """
    def __init__(self, capacity: int, refill_per_sec: float):
        self.capacity = float(capacity)
        self.refill_per_sec = float(refill_per_sec)
        self._buckets: Dict[Tuple[str, str], Bucket] = {}

    def allow(self, participant_id: str, route_key: str, cost: float = 1.0) -> bool:
        now = time.time()
        k = (participant_id, route_key)
        b = self._buckets.get(k)
        if b is None:
            b = Bucket(tokens=self.capacity, last_ts=now)
            self._buckets[k] = b

        # refill
        elapsed = max(0.0, now - b.last_ts)
        b.tokens = min(self.capacity, b.tokens + elapsed * self.refill_per_sec)
        b.last_ts = now

        if b.tokens >= cost:
            b.tokens -= cost
            return True
        return False

    def reset(self) -> None:
        self._buckets.clear()


_MONEY_LIMITER: Optional[InMemoryRateLimiter] = None


def get_money_limiter() -> InMemoryRateLimiter:
    # N money-moving submissions per minute per endpoint per participant
    global _MONEY_LIMITER
    if _MONEY_LIMITER is None:
        per_minute = get_settings().transfer_rate_limit_per_minute
        _MONEY_LIMITER = InMemoryRateLimiter(capacity=per_minute, refill_per_sec=per_minute / 60.0)
    return _MONEY_LIMITER


async def limit_money_movement(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> None:
    route_key = f"{request.method}:{request.scope.get('route').path if request.scope.get('route') else request.url.path}"
    if not get_money_limiter().allow(principal.participant_id, route_key):
        raise HTTPException(
            status_code=429,
            detail="Rate limit exceeded for payment submission.",
            headers={"Retry-After": "60"},
        )
