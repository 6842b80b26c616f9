"""Message Service - ticket chat messages."""

from uuid import UUID

from sqlalchemy.orm import Session

from incident_engine.db.enums import MessageSenderType
from incident_engine.db.models import Ticket, TicketMessage


def append_system_message(
    db: Session,
    ticket_id: UUID,
    author_id: UUID | None,
    text: str,
    details: dict | None = None,
) -> TicketMessage:
    """Append a system-authored message to a ticket conversation."""
    message = TicketMessage(
        ticket_id=ticket_id,
        author_user_id=author_id,
        sender_type=MessageSenderType.SYSTEM.value,
        body=text,
        details=details,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def list_messages(
    db: Session,
    ticket_id: UUID,
    org_id: UUID,
    limit: int = 50,
) -> list[TicketMessage]:
    """Oldest-first messages of a ticket, scoped to the organization."""
    return (
        db.query(TicketMessage)
        .join(Ticket, Ticket.id == TicketMessage.ticket_id)
        .filter(
            TicketMessage.ticket_id == ticket_id,
            Ticket.organization_id == org_id,
        )
        .order_by(TicketMessage.created_at)
        .limit(limit)
        .all()
    )
