"""Outbound mail channel (Resend HTTP API)."""

import html
import logging

import httpx

from incident_engine.core.errors import TransientDeliveryError
from incident_engine.db.enums import ChannelType
from incident_engine.schemas.notifications import NotificationRead
from incident_engine.services.channels.base import NotificationChannel, Recipient
from incident_engine.services.http_service import RetryPolicy, request_with_retries

logger = logging.getLogger(__name__)

RESEND_SEND_URL = "https://api.resend.com/emails"
RESEND_RETRY_POLICY = RetryPolicy(max_attempts=3)


def absolute_url(frontend_url: str, action_url: str | None) -> str | None:
    if not action_url:
        return None
    if action_url.startswith(("http://", "https://")):
        return action_url
    return f"{frontend_url.rstrip('/')}/{action_url.lstrip('/')}"


class EmailChannel(NotificationChannel):
    """
    Sends a notification email whenever the recipient has an address.

    Without an API key the send is logged and skipped (dry run).
    """

    channel_type = ChannelType.EMAIL

    def __init__(
        self,
        *,
        api_key: str,
        email_from: str,
        frontend_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._api_key = api_key
        self._email_from = email_from
        self._frontend_url = frontend_url
        self._timeout = timeout
        self._transport = transport

    async def is_enabled_for(self, recipient: Recipient, config: dict | None) -> bool:
        return bool(recipient.email)

    def _render(self, notification: NotificationRead) -> tuple[str, str]:
        link = absolute_url(self._frontend_url, notification.action_url)
        text = notification.message
        body = f"<p>{html.escape(notification.message)}</p>"
        if link:
            text = f"{text}\n\n{link}"
            body += f'<p><a href="{html.escape(link)}">View details</a></p>'
        return body, text

    async def deliver(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        config: dict | None,
    ) -> None:
        if not recipient.email:
            return
        if not self._api_key:
            logger.info("[DRY RUN] Email send skipped for notification=%s", notification.id)
            return

        body, text = self._render(notification)
        payload = {
            "from": self._email_from,
            "to": [recipient.email],
            "subject": notification.title,
            "html": body,
            "text": text,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Idempotency-Key": f"notification-{notification.id}",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:

                async def request_fn() -> httpx.Response:
                    return await client.post(RESEND_SEND_URL, headers=headers, json=payload)

                response = await request_with_retries(request_fn, RESEND_RETRY_POLICY)
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(
                f"Resend request failed: {type(exc).__name__}",
                channel=self.channel_type.value,
                user_id=recipient.user_id,
            ) from exc

        # Resend answers 409 for an idempotency replay of a message it already accepted
        if 200 <= response.status_code < 300 or response.status_code == 409:
            return
        raise TransientDeliveryError(
            f"Resend API error: {response.status_code}",
            channel=self.channel_type.value,
            user_id=recipient.user_id,
        )
