from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from fastapi import Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import ConflictError, to_http
from app.db.session import get_db
from app.policies.rbac import Principal
from app.services.idempotency_service import IdempotencyService, StoredResponse, request_hash

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 128


@dataclass
class IdempotencyContext:
    participant_id: str
    endpoint_key: str
    idem_key: str
    request_hash: str
    stored: Optional[StoredResponse] = None

    @property
    def is_replay(self) -> bool:
        return self.stored is not None

    def replay(self) -> JSONResponse:
        logger.info("[idempotency] replay key=%s endpoint=%s", self.idem_key, self.endpoint_key)
        return JSONResponse(
            status_code=self.stored.status,
            content=self.stored.body,
            headers={"Idempotent-Replay": "true"},
        )

    def store(self, db: Session, response_json: Dict[str, Any], status: int = 200) -> None:
        IdempotencyService().record(
            db,
            participant_id=self.participant_id,
            endpoint_key=self.endpoint_key,
            idem_key=self.idem_key,
            req_hash=self.request_hash,
            response_json=response_json,
            response_status=status,
        )


async def require_idempotency_key(request: Request) -> str:
    key = (request.headers.get("Idempotency-Key") or "").strip()
    if not key:
        raise HTTPException(status_code=400, detail="Missing Idempotency-Key header.")
    if len(key) > MAX_KEY_LENGTH:
        raise HTTPException(status_code=400, detail="Idempotency-Key too long.")
    return key


async def _json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError:
        # multipart or malformed bodies are fingerprinted by their bytes
        return {"_raw": raw.decode("latin-1")}
    return payload if isinstance(payload, dict) else {"_": payload}


async def idempotency_guard(
    request: Request,
    idem_key: str = Depends(require_idempotency_key),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
) -> IdempotencyContext:
    """
    Use on POST endpoints that move money.

    The scope includes the concrete path, so one key used against two
    different timelines (or forms) gives two independent records.
    """
    endpoint_key = f"{request.method}:{request.url.path}"
    req_hash = request_hash(await _json_body(request))

    try:
        stored = IdempotencyService().check(
            db,
            participant_id=principal.participant_id,
            endpoint_key=endpoint_key,
            idem_key=idem_key,
            req_hash=req_hash,
        )
    except ConflictError as e:
        raise to_http(e)

    return IdempotencyContext(
        participant_id=principal.participant_id,
        endpoint_key=endpoint_key,
        idem_key=idem_key,
        request_hash=req_hash,
        stored=stored,
    )
