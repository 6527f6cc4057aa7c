from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel


class NotificationView(BaseModel):
    id: str
    name: str
    role: str
    message: str
    isRead: bool
    createdAt: Optional[str] = None


class NotificationListResponse(BaseModel):
    count: int
    notifications: List[NotificationView]
