"""Enums for the incident lifecycle models."""

from enum import Enum


class TicketStatus(str, Enum):
    """Ticket lifecycle status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


OPEN_TICKET_STATUSES = frozenset({TicketStatus.PENDING, TicketStatus.IN_PROGRESS})
TERMINAL_TICKET_STATUSES = frozenset(
    {TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.CANCELLED}
)


class AlertLevel(str, Enum):
    """Time-derived severity semaphore, ordered GREEN < YELLOW < ORANGE < RED."""

    GREEN = "green"
    YELLOW = "yellow"
    ORANGE = "orange"
    RED = "red"

    @property
    def rank(self) -> int:
        return _ALERT_RANK[self]


_ALERT_RANK = {
    AlertLevel.GREEN: 0,
    AlertLevel.YELLOW: 1,
    AlertLevel.ORANGE: 2,
    AlertLevel.RED: 3,
}


class ReopenRequestStatus(str, Enum):
    """Reopen request status."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(str, Enum):
    """Reviewer decision on a pending reopen request."""

    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationPriority(str, Enum):
    """Notification priority."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationType(str, Enum):
    """Types of notifications produced by the lifecycle engine."""

    # Ticket notifications
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_ALERT = "ticket_alert"

    # Reopen workflow
    REOPEN_REQUESTED = "reopen_requested"
    REOPEN_APPROVED = "reopen_approved"
    REOPEN_REJECTED = "reopen_rejected"

    SYSTEM = "system"


class ChannelType(str, Enum):
    """Notification delivery channels."""

    WEBSOCKET = "websocket"
    EMAIL = "email"
    TELEGRAM = "telegram"
    WHATSAPP = "whatsapp"


# Channels that need no external handle and are enabled for new users
DEFAULT_ENABLED_CHANNELS = frozenset({ChannelType.WEBSOCKET, ChannelType.EMAIL})


class MessageSenderType(str, Enum):
    """Author kind of a ticket chat message."""

    USER = "user"
    SYSTEM = "system"
