"""Notification channel abstract base class.

Every delivery channel (realtime, email, telegram, whatsapp) implements
this interface. The dispatcher always asks ``is_enabled_for`` before
calling ``deliver``; an unconfigured recipient is skipped, never an error.
"""

from abc import ABC, abstractmethod
from typing import ClassVar
from uuid import UUID

from pydantic import BaseModel

from incident_engine.core.errors import ValidationError
from incident_engine.db.enums import ChannelType
from incident_engine.schemas.notifications import NotificationRead


class Recipient(BaseModel):
    """Resolved notification recipient.

    Channel-specific handles (chat id, phone number) live in the
    recipient's ChannelPreference config, not here.
    """

    user_id: UUID
    org_id: UUID
    email: str | None = None
    display_name: str = ""


class NotificationChannel(ABC):
    """Abstract base class for notification channels.

    Subclasses set ``channel_type`` and, when the channel needs a per-user
    external handle, ``required_config_keys``.
    """

    channel_type: ClassVar[ChannelType]
    required_config_keys: ClassVar[tuple[str, ...]] = ()
    # Config keys that are never returned to clients
    secret_config_keys: ClassVar[tuple[str, ...]] = ()
    # Config keys only the server may set; dropped from client input
    server_config_keys: ClassVar[tuple[str, ...]] = ()

    @property
    def requires_configuration(self) -> bool:
        return bool(self.required_config_keys)

    def is_configured(self, config: dict | None) -> bool:
        """True when every required key holds a non-empty value."""
        config = config or {}
        return all(config.get(key) for key in self.required_config_keys)

    def validate_config(self, config: dict) -> dict:
        """Return the normalised config or raise ValidationError."""
        missing = [key for key in self.required_config_keys if not config.get(key)]
        if missing:
            raise ValidationError(
                f"{self.channel_type.value} channel requires: {', '.join(missing)}"
            )
        return {
            key: value
            for key, value in config.items()
            if key not in self.server_config_keys and key not in self.secret_config_keys
        }

    def sanitize_config(self, config: dict | None) -> dict:
        """Client-safe copy of the config."""
        return {
            key: value
            for key, value in (config or {}).items()
            if key not in self.secret_config_keys
        }

    @abstractmethod
    async def is_enabled_for(self, recipient: Recipient, config: dict | None) -> bool:
        """Can this channel reach the recipient right now."""

    @abstractmethod
    async def deliver(
        self,
        recipient: Recipient,
        notification: NotificationRead,
        config: dict | None,
    ) -> None:
        """Deliver one notification.

        Raises:
            TransientDeliveryError: The transport failed.
        """


def mask_tail(value: str, visible: int) -> str:
    """``***`` followed by the last ``visible`` characters."""
    value = str(value)
    if len(value) <= visible:
        return "***"
    return f"***{value[-visible:]}"
