from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List
from storyloom.models.notification import NotificationType


class NotificationResponse(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    is_read: bool
    related_id: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class NotificationPage(BaseModel):
    page: List[NotificationResponse]
    is_done: bool
    continue_cursor: Optional[str] = None


class UnreadCount(BaseModel):
    unread: int
