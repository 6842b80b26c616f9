"""Notification schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from incident_engine.db.enums import NotificationPriority, NotificationType


class NotificationPayload(BaseModel):
    """What a caller asks the dispatcher to send."""
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    type: NotificationType = NotificationType.SYSTEM
    priority: NotificationPriority = NotificationPriority.NORMAL
    details: dict | None = None
    action_url: str | None = Field(default=None, max_length=500)


class NotificationRead(BaseModel):
    """Notification record as returned to clients and pushed to channels."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: UUID
    organization_id: UUID
    type: str
    priority: str
    title: str
    message: str
    details: dict | None = None
    action_url: str | None = None
    is_read: bool
    read_at: datetime | None = None
    created_at: datetime


class NotificationListResponse(BaseModel):
    items: list[NotificationRead]
    unread_count: int
    total: int
    page: int
    per_page: int
    pages: int


class UnreadCountResponse(BaseModel):
    count: int
