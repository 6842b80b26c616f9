"""Realtime push channel over the WebSocket connection registry."""

import logging

from incident_engine.core.websocket import ConnectionManager
from incident_engine.db.enums import ChannelType
from incident_engine.schemas.notifications import NotificationRead
from incident_engine.services.channels.base import NotificationChannel, Recipient

logger = logging.getLogger(__name__)

NOTIFICATION_EVENT = "notification:new"


class RealtimeChannel(NotificationChannel):
    """Pushes to live sockets; a user with no socket is simply skipped."""

    channel_type = ChannelType.WEBSOCKET

    def __init__(self, connections: ConnectionManager):
        self._connections = connections

    async def is_enabled_for(self, recipient: Recipient, config: dict | None) -> bool:
        return self._connections.is_user_connected(recipient.user_id)

    async def deliver(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        config: dict | None,
    ) -> None:
        if not self._connections.is_user_connected(recipient.user_id):
            return
        reached = await self._connections.send_to_user(
            recipient.user_id, NOTIFICATION_EVENT, notification.model_dump(mode="json")
        )
        logger.debug("Pushed notification %s to %d sockets", notification.id, reached)
