"""Notification delivery channels."""

from incident_engine.services.channels.base import NotificationChannel, Recipient
from incident_engine.services.channels.registry import ChannelRegistry

__all__ = ["ChannelRegistry", "NotificationChannel", "Recipient"]
