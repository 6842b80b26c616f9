"""
Notification Service - durable notification records and channel fan-out.

``NotificationDispatcher.send_to_user`` is the single entry point other
subsystems call. The record is committed first; channel delivery is best
effort, per channel, with a bounded time budget.
"""

import asyncio
import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session

from incident_engine.core.config import settings
from incident_engine.core.structured_logging import build_log_context
from incident_engine.core.websocket import ConnectionManager
from incident_engine.db.models import Notification, User
from incident_engine.schemas.notifications import NotificationPayload, NotificationRead
from incident_engine.services import channel_preference_service
from incident_engine.services.channels.base import NotificationChannel, Recipient
from incident_engine.services.channels.registry import ChannelRegistry
from incident_engine.utils.pagination import PaginationParams, paginate_query
from incident_engine.utils.time import utcnow

logger = logging.getLogger(__name__)

NOTIFICATION_UPDATE_EVENT = "notification:update"


# =============================================================================
# Notification CRUD
# =============================================================================


def create_notification(
    db: Session,
    org_id: UUID,
    user_id: UUID,
    payload: NotificationPayload,
) -> Notification:
    """Persist a notification record."""
    notification = Notification(
        organization_id=org_id,
        user_id=user_id,
        type=payload.type.value,
        priority=payload.priority.value,
        title=payload.title,
        message=payload.message,
        details=payload.details,
        action_url=payload.action_url,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    return notification


def _user_query(db: Session, user_id: UUID, org_id: UUID):
    return db.query(Notification).filter(
        Notification.user_id == user_id,
        Notification.organization_id == org_id,
    )


def get_notifications(
    db: Session,
    user_id: UUID,
    org_id: UUID,
    pagination: PaginationParams,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    """Newest-first notifications for a user, with the total count."""
    query = _user_query(db, user_id, org_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    query = query.order_by(Notification.created_at.desc(), Notification.id.desc())
    return paginate_query(query, pagination)


def get_unread_count(db: Session, user_id: UUID, org_id: UUID) -> int:
    """Get count of unread notifications."""
    return _user_query(db, user_id, org_id).filter(Notification.is_read.is_(False)).count()


def get_notification(
    db: Session, notification_id: UUID, user_id: UUID, org_id: UUID
) -> Notification | None:
    return _user_query(db, user_id, org_id).filter(Notification.id == notification_id).first()


def mark_read(
    db: Session,
    notification_id: UUID,
    user_id: UUID,
    org_id: UUID,
) -> Notification | None:
    """Mark a notification as read (scoped by org for tenant isolation)."""
    notification = get_notification(db, notification_id, user_id, org_id)
    if notification and not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification


def mark_all_read(db: Session, user_id: UUID, org_id: UUID) -> int:
    """Mark all notifications as read. Returns count updated."""
    count = (
        _user_query(db, user_id, org_id)
        .filter(Notification.is_read.is_(False))
        .update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
    )
    db.commit()
    return count


def delete_notification(
    db: Session, notification_id: UUID, user_id: UUID, org_id: UUID
) -> bool:
    notification = get_notification(db, notification_id, user_id, org_id)
    if not notification:
        return False
    db.delete(notification)
    db.commit()
    return True


def delete_read_notifications(db: Session, user_id: UUID, org_id: UUID) -> int:
    """Delete every read notification of a user. Returns count deleted."""
    count = (
        _user_query(db, user_id, org_id)
        .filter(Notification.is_read.is_(True))
        .delete(synchronize_session=False)
    )
    db.commit()
    return count


# =============================================================================
# Dispatch
# =============================================================================


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one channel attempt."""

    channel: str
    delivered: bool
    skipped: bool = False
    error: str | None = None


@dataclass(frozen=True)
class _ChannelTarget:
    channel: NotificationChannel
    config: dict


class NotificationDispatcher:
    """Persists notifications and fans them out across enabled channels."""

    def __init__(
        self,
        registry: ChannelRegistry,
        connections: ConnectionManager | None = None,
        channel_timeout: float | None = None,
    ):
        self.registry = registry
        self.connections = connections
        self.channel_timeout = (
            channel_timeout
            if channel_timeout is not None
            else settings.CHANNEL_DELIVERY_TIMEOUT_SECONDS
        )

    async def send_to_user(
        self,
        db: Session,
        user_id: UUID,
        org_id: UUID,
        payload: NotificationPayload,
    ) -> Notification:
        """
        Persist one notification, then deliver it on every enabled channel.

        Returns the persisted record. Channel failures are logged and never
        raised; only a failure to persist propagates.
        """
        notification = create_notification(db, org_id, user_id, payload)
        snapshot = NotificationRead.model_validate(notification)

        try:
            recipient, targets = self._resolve_targets(db, user_id, org_id)
        except Exception as exc:
            db.rollback()
            logger.error(
                "Channel resolution failed for notification %s: %s",
                notification.id,
                type(exc).__name__,
                extra=build_log_context(
                    user_id=user_id, org_id=org_id, notification_id=notification.id
                ),
            )
            return notification

        if recipient is not None and targets:
            await self._fan_out(recipient, snapshot, targets)
        return notification

    def _resolve_targets(
        self, db: Session, user_id: UUID, org_id: UUID
    ) -> tuple[Recipient | None, list[_ChannelTarget]]:
        user = db.query(User).filter(User.id == user_id).first()
        if not user or not user.is_active:
            logger.warning(
                "Notification recipient missing or inactive",
                extra=build_log_context(user_id=user_id, org_id=org_id),
            )
            return None, []

        recipient = Recipient(
            user_id=user.id,
            org_id=org_id,
            email=user.email,
            display_name=user.display_name,
        )
        targets = [
            _ChannelTarget(self.registry.get(pref.channel_type), dict(pref.config or {}))
            for pref in channel_preference_service.get_enabled_preferences(
                db, user_id, self.registry
            )
        ]
        return recipient, targets

    async def deliver(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        channels: list[tuple[NotificationChannel, dict]],
    ) -> list[DeliveryOutcome]:
        """Deliver an already persisted notification on the given channels."""
        targets = [_ChannelTarget(channel, config) for channel, config in channels]
        return await self._fan_out(recipient, notification, targets)

    async def _fan_out(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        targets: list[_ChannelTarget],
    ) -> list[DeliveryOutcome]:
        return list(
            await asyncio.gather(
                *(self._attempt(recipient, notification, target) for target in targets)
            )
        )

    async def _attempt(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        target: _ChannelTarget,
    ) -> DeliveryOutcome:
        channel_name = target.channel.channel_type.value
        try:
            delivered = await asyncio.wait_for(
                self._enabled_then_deliver(recipient, notification, target),
                timeout=self.channel_timeout,
            )
        except asyncio.TimeoutError:
            self._log_failure(recipient, notification, channel_name, "timeout")
            return DeliveryOutcome(channel=channel_name, delivered=False, error="timeout")
        except Exception as exc:
            self._log_failure(recipient, notification, channel_name, type(exc).__name__)
            return DeliveryOutcome(channel=channel_name, delivered=False, error=str(exc))

        if not delivered:
            return DeliveryOutcome(channel=channel_name, delivered=False, skipped=True)
        return DeliveryOutcome(channel=channel_name, delivered=True)

    @staticmethod
    async def _enabled_then_deliver(
        recipient: Recipient,
        notification: NotificationRead,
        target: _ChannelTarget,
    ) -> bool:
        if not await target.channel.is_enabled_for(recipient, target.config):
            return False
        await target.channel.deliver(recipient, notification, target.config)
        return True

    @staticmethod
    def _log_failure(
        recipient: Recipient,
        notification: NotificationRead,
        channel: str,
        reason: str,
    ) -> None:
        logger.warning(
            "Notification delivery failed user=%s channel=%s notification=%s reason=%s",
            recipient.user_id,
            channel,
            notification.id,
            reason,
            extra=build_log_context(
                user_id=recipient.user_id,
                org_id=recipient.org_id,
                channel=channel,
                notification_id=notification.id,
            ),
        )

    async def publish_read_state(
        self,
        db: Session,
        user_id: UUID,
        org_id: UUID,
        notification_id: UUID | None = None,
    ) -> None:
        """Push the new unread count after a read-state change."""
        if self.connections is None or not self.connections.is_user_connected(user_id):
            return
        await self.connections.send_to_user(
            user_id,
            NOTIFICATION_UPDATE_EVENT,
            {
                "notification_id": str(notification_id) if notification_id else None,
                "unread_count": get_unread_count(db, user_id, org_id),
            },
        )
