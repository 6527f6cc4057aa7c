# app/api/v1/notifications.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.errors import FundingError, to_http
from app.db.session import get_db
from app.models.notification import Notification
from app.policies.rbac import Principal
from app.schemas.notifications import NotificationListResponse, NotificationView
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications")


def _view(n: Notification) -> NotificationView:
    return NotificationView(
        id=str(n.id),
        name=n.name,
        role=n.role,
        message=n.message,
        isRead=n.is_read,
        createdAt=n.created_at.isoformat() if n.created_at else None,
    )


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    unreadOnly: bool = Query(False),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    rows = NotificationService().list_for_user(
        db, user_id=principal.participant_id, unread_only=unreadOnly, limit=limit
    )
    return NotificationListResponse(count=len(rows), notifications=[_view(n) for n in rows])


@router.post("/{notification_id}/read", response_model=NotificationView)
def mark_notification_read(
    notification_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    try:
        row = NotificationService().mark_read(
            db, user_id=principal.participant_id, notification_id=notification_id
        )
    except FundingError as e:
        raise to_http(e)
    return _view(row)
