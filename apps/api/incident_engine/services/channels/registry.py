"""Channel registry: channel type to provider instance."""

import httpx

from incident_engine.core.config import Settings
from incident_engine.core.errors import NotFoundError
from incident_engine.core.websocket import ConnectionManager
from incident_engine.db.enums import ChannelType
from incident_engine.services.channels.base import NotificationChannel
from incident_engine.services.channels.email import EmailChannel
from incident_engine.services.channels.realtime import RealtimeChannel
from incident_engine.services.channels.telegram import TelegramChannel
from incident_engine.services.channels.whatsapp import WhatsAppChannel


class ChannelRegistry:
    """Plain mapping of ChannelType to channel instance."""

    def __init__(self, channels: list[NotificationChannel] | None = None):
        self._channels: dict[ChannelType, NotificationChannel] = {}
        for channel in channels or []:
            self.register(channel)

    def register(self, channel: NotificationChannel) -> None:
        self._channels[channel.channel_type] = channel

    def get(self, channel_type: ChannelType | str) -> NotificationChannel:
        try:
            return self._channels[ChannelType(channel_type)]
        except (KeyError, ValueError):
            raise NotFoundError(f"Unknown notification channel: {channel_type}")

    def has(self, channel_type: ChannelType | str) -> bool:
        try:
            return ChannelType(channel_type) in self._channels
        except ValueError:
            return False

    @property
    def channel_types(self) -> list[ChannelType]:
        return list(self._channels)


def build_default_registry(
    connections: ConnectionManager,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ChannelRegistry:
    """Registry with every built-in channel, configured from settings."""
    timeout = settings.CHANNEL_DELIVERY_TIMEOUT_SECONDS
    return ChannelRegistry(
        [
            RealtimeChannel(connections),
            EmailChannel(
                api_key=settings.RESEND_API_KEY,
                email_from=settings.EMAIL_FROM,
                frontend_url=settings.FRONTEND_URL,
                timeout=timeout,
                transport=transport,
            ),
            TelegramChannel(
                bot_token=settings.TELEGRAM_BOT_TOKEN,
                api_base=settings.TELEGRAM_API_BASE,
                frontend_url=settings.FRONTEND_URL,
                timeout=timeout,
                transport=transport,
            ),
            WhatsAppChannel(
                relay_url=settings.WHATSAPP_RELAY_URL,
                relay_token=settings.WHATSAPP_RELAY_TOKEN,
                frontend_url=settings.FRONTEND_URL,
                timeout=timeout,
                transport=transport,
            ),
        ]
    )
