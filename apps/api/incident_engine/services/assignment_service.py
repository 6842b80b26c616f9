"""
Assignment Service - least-loaded employee selection.

Selection takes no locks and reserves no capacity. Two tickets created at
the same moment can both be routed to the same employee; the result is a
load-balancing hint, not a reservation.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from incident_engine.core.errors import ValidationError
from incident_engine.db.enums import OPEN_TICKET_STATUSES
from incident_engine.db.models import Ticket
from incident_engine.services import permission_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmployeeWorkload:
    """Open-ticket count of one eligible employee (derived, never stored)."""

    user_id: UUID
    display_name: str
    open_tickets: int


def _open_counts(db: Session, org_id: UUID, user_ids: list[UUID]) -> dict[UUID, int]:
    if not user_ids:
        return {}
    rows = (
        db.query(Ticket.assigned_user_id, func.count(Ticket.id))
        .filter(
            Ticket.organization_id == org_id,
            Ticket.assigned_user_id.in_(user_ids),
            Ticket.status.in_([s.value for s in OPEN_TICKET_STATUSES]),
            Ticket.is_active.is_(True),
        )
        .group_by(Ticket.assigned_user_id)
        .all()
    )
    return {user_id: count for user_id, count in rows}


def get_employee_workloads(db: Session, org_id: UUID) -> list[EmployeeWorkload]:
    """Workload of every eligible employee, in discovery order."""
    employees = permission_service.list_ticket_receivers(db, org_id)
    counts = _open_counts(db, org_id, [e.id for e in employees])
    return [
        EmployeeWorkload(
            user_id=employee.id,
            display_name=employee.display_name,
            open_tickets=counts.get(employee.id, 0),
        )
        for employee in employees
    ]


def get_least_loaded_employee(db: Session, org_id: UUID) -> UUID | None:
    """
    Eligible employee with the fewest open tickets, or None.

    Ties go to the first employee discovered (oldest account first).
    """
    workloads = get_employee_workloads(db, org_id)
    if not workloads:
        logger.warning("No ticket receivers found for org=%s", org_id)
        return None

    selected = min(workloads, key=lambda w: w.open_tickets)
    logger.info(
        "Selected employee %s with %d open tickets for assignment",
        selected.user_id,
        selected.open_tickets,
    )
    return selected.user_id


def assign_ticket(db: Session, ticket: Ticket, user_id: UUID) -> Ticket:
    """
    Assign a ticket to an eligible employee of its organization.

    Raises:
        ValidationError: user cannot receive tickets in this organization
    """
    eligible = {u.id for u in permission_service.list_ticket_receivers(db, ticket.organization_id)}
    if user_id not in eligible:
        raise ValidationError("User cannot receive tickets in this organization")
    ticket.assigned_user_id = user_id
    db.commit()
    db.refresh(ticket)
    return ticket


def auto_assign_ticket(db: Session, ticket: Ticket) -> UUID | None:
    """Assign an unassigned ticket to the least-loaded employee, if any."""
    if ticket.assigned_user_id:
        return ticket.assigned_user_id
    user_id = get_least_loaded_employee(db, ticket.organization_id)
    if user_id is None:
        return None
    ticket.assigned_user_id = user_id
    db.commit()
    db.refresh(ticket)
    return user_id
