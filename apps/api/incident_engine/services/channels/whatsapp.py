"""WhatsApp channel through an HTTP messaging relay."""

import re

import httpx

from incident_engine.core.errors import TransientDeliveryError, ValidationError
from incident_engine.db.enums import ChannelType
from incident_engine.schemas.notifications import NotificationRead
from incident_engine.services.channels.base import NotificationChannel, Recipient, mask_tail
from incident_engine.services.channels.email import absolute_url
from incident_engine.services.http_service import request_with_retries

E164_PATTERN = re.compile(r"^\+[1-9]\d{7,14}$")


class WhatsAppChannel(NotificationChannel):
    """
    Needs a verified ``phone_number`` in the user's channel config.

    Verification is done out of band; the relay only accepts numbers
    flagged ``is_verified``, and only the server sets that flag.
    """

    channel_type = ChannelType.WHATSAPP
    required_config_keys = ("phone_number",)
    secret_config_keys = ("verification_code", "verification_expiry")
    server_config_keys = ("is_verified",)

    def __init__(
        self,
        *,
        relay_url: str,
        relay_token: str,
        frontend_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._relay_url = relay_url.rstrip("/")
        self._relay_token = relay_token
        self._frontend_url = frontend_url
        self._timeout = timeout
        self._transport = transport

    def validate_config(self, config: dict) -> dict:
        normalized = super().validate_config(config)
        phone = re.sub(r"[\s\-()]", "", str(normalized["phone_number"]))
        if not E164_PATTERN.match(phone):
            raise ValidationError("whatsapp phone_number must be in E.164 format")
        normalized["phone_number"] = phone
        # A new number must be verified again
        normalized["is_verified"] = False
        return normalized

    def sanitize_config(self, config: dict | None) -> dict:
        cleaned = super().sanitize_config(config)
        if cleaned.get("phone_number"):
            cleaned["phone_number"] = mask_tail(cleaned["phone_number"], 4)
        return cleaned

    def is_configured(self, config: dict | None) -> bool:
        return super().is_configured(config) and bool((config or {}).get("is_verified"))

    async def is_enabled_for(self, recipient: Recipient, config: dict | None) -> bool:
        return bool(self._relay_url) and self.is_configured(config)

    async def deliver(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        config: dict | None,
    ) -> None:
        if not await self.is_enabled_for(recipient, config):
            return

        text = f"*{notification.title}*\n{notification.message}"
        link = absolute_url(self._frontend_url, notification.action_url)
        if link:
            text += f"\n{link}"
        headers = {"Authorization": f"Bearer {self._relay_token}"} if self._relay_token else {}
        payload = {"to": config["phone_number"], "text": text}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(f"{self._relay_url}/messages", headers=headers, json=payload)

                response = await request_with_retries(request_fn)
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(
                f"WhatsApp relay request failed: {type(exc).__name__}",
                channel=self.channel_type.value,
                user_id=recipient.user_id,
            ) from exc

        if not 200 <= response.status_code < 300:
            raise TransientDeliveryError(
                f"WhatsApp relay error: {response.status_code}",
                channel=self.channel_type.value,
                user_id=recipient.user_id,
            )
