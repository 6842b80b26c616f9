"""Ticket Service - ticket lifecycle helpers."""

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from incident_engine.core.errors import NotFoundError, ValidationError
from incident_engine.db.enums import (
    OPEN_TICKET_STATUSES,
    TERMINAL_TICKET_STATUSES,
    AlertLevel,
    NotificationPriority,
    NotificationType,
    TicketStatus,
)
from incident_engine.db.models import Ticket
from incident_engine.schemas.notifications import NotificationPayload
from incident_engine.services import assignment_service, message_service
from incident_engine.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

UPLOAD_WINDOW_MIN_HOURS = 1
UPLOAD_WINDOW_MAX_HOURS = 168
UPLOAD_WINDOW_DEFAULT_HOURS = 24


def ticket_action_url(ticket_id: UUID) -> str:
    return f"/tickets/{ticket_id}"


def get_ticket(db: Session, ticket_id: UUID, org_id: UUID | None = None) -> Ticket:
    """
    Load a ticket, optionally scoped to an organization.

    Raises:
        NotFoundError: absent, or owned by another organization
    """
    query = db.query(Ticket).filter(Ticket.id == ticket_id)
    if org_id is not None:
        query = query.filter(Ticket.organization_id == org_id)
    ticket = query.first()
    if not ticket:
        raise NotFoundError(f"Ticket {ticket_id} not found")
    return ticket


def list_open_tickets(db: Session, org_id: UUID | None = None) -> list[Ticket]:
    """Active tickets still being handled, oldest first."""
    query = db.query(Ticket).filter(
        Ticket.status.in_([s.value for s in OPEN_TICKET_STATUSES]),
        Ticket.is_active.is_(True),
    )
    if org_id is not None:
        query = query.filter(Ticket.organization_id == org_id)
    return query.order_by(Ticket.created_at, Ticket.id).all()


async def create_ticket(
    db: Session,
    org_id: UUID,
    created_by_user_id: UUID,
    title: str,
    description: str | None = None,
    dispatcher=None,
    auto_assign: bool = True,
) -> Ticket:
    """
    Create a PENDING ticket and route it to the least-loaded employee.

    Assignment failures never block creation.
    """
    now = utcnow()
    ticket = Ticket(
        organization_id=org_id,
        created_by_user_id=created_by_user_id,
        title=title,
        description=description,
        status=TicketStatus.PENDING.value,
        alert_level=AlertLevel.GREEN.value,
        created_at=now,
        escalation_started_at=now,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)

    if not auto_assign:
        return ticket

    try:
        assignee_id = assignment_service.auto_assign_ticket(db, ticket)
    except Exception as exc:
        db.rollback()
        logger.error("Automatic assignment failed for ticket %s: %s", ticket.id, type(exc).__name__)
        return ticket

    if assignee_id and dispatcher is not None:
        await dispatcher.send_to_user(
            db,
            assignee_id,
            org_id,
            NotificationPayload(
                title="New ticket assigned",
                message=f"Ticket \"{ticket.title}\" was assigned to you",
                type=NotificationType.TICKET_ASSIGNED,
                priority=NotificationPriority.NORMAL,
                details={"ticket_id": str(ticket.id)},
                action_url=ticket_action_url(ticket.id),
            ),
        )
    return ticket


def change_status(
    db: Session,
    ticket: Ticket,
    new_status: TicketStatus,
    now: datetime | None = None,
) -> Ticket:
    """
    Move a ticket to a new status.

    Entering a terminal status stamps ``final_state_reached_at``; leaving
    one clears it.
    """
    now = now or utcnow()
    was_terminal = TicketStatus(ticket.status) in TERMINAL_TICKET_STATUSES
    is_terminal = new_status in TERMINAL_TICKET_STATUSES

    ticket.status = new_status.value
    if is_terminal and not was_terminal:
        ticket.final_state_reached_at = now
    elif was_terminal and not is_terminal:
        ticket.final_state_reached_at = None

    db.commit()
    db.refresh(ticket)
    return ticket


# =============================================================================
# Client image re-upload window
# =============================================================================


def open_client_upload_window(
    db: Session,
    ticket: Ticket,
    requested_by_user_id: UUID,
    message: str,
    hours: int = UPLOAD_WINDOW_DEFAULT_HOURS,
    now: datetime | None = None,
) -> Ticket:
    """Let the client upload images again for ``hours`` hours."""
    if not UPLOAD_WINDOW_MIN_HOURS <= hours <= UPLOAD_WINDOW_MAX_HOURS:
        raise ValidationError(
            f"hours must be between {UPLOAD_WINDOW_MIN_HOURS} and {UPLOAD_WINDOW_MAX_HOURS}"
        )
    expires_at = (now or utcnow()) + timedelta(hours=hours)
    ticket.client_upload_enabled = True
    ticket.client_upload_expires_at = expires_at
    ticket.client_upload_requested_by_user_id = requested_by_user_id
    db.commit()

    message_service.append_system_message(
        db,
        ticket.id,
        requested_by_user_id,
        message,
        details={
            "request_type": "re_upload_images",
            "allowed_until": expires_at.isoformat(),
            "image_upload_enabled": True,
        },
    )
    db.refresh(ticket)
    return ticket


def close_client_upload_window(db: Session, ticket: Ticket) -> Ticket:
    ticket.client_upload_enabled = False
    ticket.client_upload_expires_at = None
    ticket.client_upload_requested_by_user_id = None
    db.commit()
    db.refresh(ticket)
    return ticket


def is_client_upload_open(ticket: Ticket, now: datetime | None = None) -> bool:
    if not ticket.client_upload_enabled or ticket.client_upload_expires_at is None:
        return False
    return as_utc(now or utcnow()) < as_utc(ticket.client_upload_expires_at)
