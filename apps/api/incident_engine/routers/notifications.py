"""
Notifications Router - /me/notifications endpoints.

Listing, read status and cleanup of the caller's notifications.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from incident_engine.core.deps import get_current_session, get_db, get_runtime
from incident_engine.schemas.auth import UserSession
from incident_engine.schemas.notifications import (
    NotificationListResponse,
    NotificationRead,
    UnreadCountResponse,
)
from incident_engine.services import notification_service
from incident_engine.utils.pagination import PaginationParams, get_pagination

router = APIRouter()


@router.get("/notifications", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    pagination: PaginationParams = Depends(get_pagination),
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get user's notifications (newest first)."""
    items, total = notification_service.get_notifications(
        db, session.user_id, session.org_id, pagination, unread_only=unread_only
    )
    return NotificationListResponse(
        items=[NotificationRead.model_validate(n) for n in items],
        unread_count=notification_service.get_unread_count(db, session.user_id, session.org_id),
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=pagination.pages_for(total),
    )


@router.get("/notifications/count", response_model=UnreadCountResponse)
def get_unread_count(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Get unread notification count (for polling)."""
    count = notification_service.get_unread_count(db, session.user_id, session.org_id)
    return UnreadCountResponse(count=count)


@router.patch("/notifications/{notification_id}/read", response_model=NotificationRead)
async def mark_notification_read(
    notification_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Mark a single notification as read."""
    notification = notification_service.mark_read(db, notification_id, session.user_id, session.org_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    await runtime.dispatcher.publish_read_state(db, session.user_id, session.org_id, notification.id)
    return NotificationRead.model_validate(notification)


@router.post("/notifications/read-all")
async def mark_all_notifications_read(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Mark all notifications as read."""
    count = notification_service.mark_all_read(db, session.user_id, session.org_id)
    await runtime.dispatcher.publish_read_state(db, session.user_id, session.org_id)
    return {"marked_read": count}


@router.delete("/notifications/read")
def delete_read_notifications(
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    count = notification_service.delete_read_notifications(db, session.user_id, session.org_id)
    return {"deleted": count}


@router.delete("/notifications/{notification_id}", status_code=204)
def delete_notification(
    notification_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    if not notification_service.delete_notification(db, notification_id, session.user_id, session.org_id):
        raise HTTPException(status_code=404, detail="Notification not found")
