"""Telegram Bot API channel."""

import httpx

from incident_engine.core.errors import TransientDeliveryError, ValidationError
from incident_engine.db.enums import ChannelType
from incident_engine.schemas.notifications import NotificationRead
from incident_engine.services.channels.base import NotificationChannel, Recipient, mask_tail
from incident_engine.services.channels.email import absolute_url
from incident_engine.services.http_service import request_with_retries


class TelegramChannel(NotificationChannel):
    """Needs a ``chat_id`` in the user's channel config and a bot token."""

    channel_type = ChannelType.TELEGRAM
    required_config_keys = ("chat_id",)

    def __init__(
        self,
        *,
        bot_token: str,
        api_base: str,
        frontend_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._frontend_url = frontend_url
        self._timeout = timeout
        self._transport = transport

    def validate_config(self, config: dict) -> dict:
        normalized = super().validate_config(config)
        chat_id = str(normalized["chat_id"]).strip()
        if not chat_id.lstrip("-").isdigit():
            raise ValidationError("telegram chat_id must be numeric")
        normalized["chat_id"] = chat_id
        return normalized

    def sanitize_config(self, config: dict | None) -> dict:
        cleaned = super().sanitize_config(config)
        if cleaned.get("chat_id"):
            cleaned["chat_id"] = mask_tail(cleaned["chat_id"], 6)
        return cleaned

    async def is_enabled_for(self, recipient: Recipient, config: dict | None) -> bool:
        return bool(self._bot_token) and self.is_configured(config)

    def _render(self, notification: NotificationRead) -> str:
        text = f"*{notification.title}*\n\n{notification.message}"
        link = absolute_url(self._frontend_url, notification.action_url)
        if link:
            text += f"\n\n{link}"
        return text

    async def deliver(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        config: dict | None,
    ) -> None:
        if not await self.is_enabled_for(recipient, config):
            return

        url = f"{self._api_base}/bot{self._bot_token}/sendMessage"
        payload = {
            "chat_id": config["chat_id"],
            "text": self._render(notification),
            "parse_mode": "Markdown",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(url, json=payload)

                response = await request_with_retries(request_fn)
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(
                f"Telegram request failed: {type(exc).__name__}",
                channel=self.channel_type.value,
                user_id=recipient.user_id,
            ) from exc

        if not 200 <= response.status_code < 300:
            raise TransientDeliveryError(
                f"Telegram API error: {response.status_code}",
                channel=self.channel_type.value,
                user_id=recipient.user_id,
            )
