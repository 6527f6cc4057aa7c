# app/services/notification_service.py
from __future__ import annotations

import logging
import uuid
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError
from app.models.notification import Notification
from app.models.user import User

logger = logging.getLogger(__name__)


class NotificationService:
    def add(
        self,
        db: Session,
        *,
        user_id: str,
        name: str,
        role: str,
        message: str,
    ) -> Notification:
        """
        Queue a dashboard notification for ``user_id``. Flushes only; the
        caller's transaction decides whether it is kept.
        """
        if not db.get(User, user_id):
            raise NotFoundError(f"User {user_id} not found.", field="userId")

        row = Notification(user_id=user_id, name=name, role=role, message=message)
        db.add(row)
        db.flush()
        logger.debug("[notifications] queued for user=%s role=%s", user_id, role)
        return row

    def list_for_user(
        self,
        db: Session,
        *,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Notification]:
        q = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            q = q.where(Notification.is_read.is_(False))
        return (
            db.execute(q.order_by(Notification.created_at.desc()).limit(limit))
            .scalars()
            .all()
        )

    def mark_read(self, db: Session, *, user_id: str, notification_id: uuid.UUID) -> Notification:
        row = db.get(Notification, notification_id)
        if not row or row.user_id != user_id:
            raise NotFoundError("Notification not found.", field="notificationId")
        row.is_read = True
        db.commit()
        db.refresh(row)
        return row
