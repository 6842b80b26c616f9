"""Tests for least-loaded assignment and ticket creation."""

from datetime import timedelta

import pytest

from conftest import BASE_TIME

from incident_engine.core.errors import ValidationError
from incident_engine.db.enums import AlertLevel, NotificationType, TicketStatus
from incident_engine.db.models import Notification
from incident_engine.services import assignment_service, ticket_service


@pytest.fixture
def three_agents(make_user, agent_role):
    return [make_user(f"Agent {n}", role=agent_role) for n in range(1, 4)]


def _load(make_ticket, creator, agent, count, status=TicketStatus.IN_PROGRESS):
    for _ in range(count):
        make_ticket(creator, status=status, assigned_to=agent)


def test_least_loaded_employee_wins(db, org, make_ticket, client_user, three_agents):
    first, second, third = three_agents
    _load(make_ticket, client_user, first, 3)
    _load(make_ticket, client_user, second, 1)
    _load(make_ticket, client_user, third, 2)

    assert assignment_service.get_least_loaded_employee(db, org.id) == second.id


def test_ties_go_to_the_oldest_employee(db, org, make_ticket, client_user, three_agents):
    first, second, third = three_agents
    _load(make_ticket, client_user, first, 2)
    _load(make_ticket, client_user, second, 1)
    _load(make_ticket, client_user, third, 1)

    assert assignment_service.get_least_loaded_employee(db, org.id) == second.id


def test_only_open_tickets_count(db, org, make_ticket, client_user, three_agents):
    first, second, third = three_agents
    _load(make_ticket, client_user, first, 5, status=TicketStatus.CLOSED)
    _load(make_ticket, client_user, second, 1)
    _load(make_ticket, client_user, third, 1, status=TicketStatus.PENDING)

    workloads = assignment_service.get_employee_workloads(db, org.id)

    assert [w.open_tickets for w in workloads] == [0, 1, 1]
    assert assignment_service.get_least_loaded_employee(db, org.id) == first.id


def test_no_eligible_employee_returns_none(db, org, client_user, supervisor):
    assert assignment_service.get_least_loaded_employee(db, org.id) is None


def test_inactive_employees_are_not_eligible(db, org, make_user, agent_role):
    make_user("Gone Agent", role=agent_role, is_active=False)
    active = make_user("Active Agent", role=agent_role)

    workloads = assignment_service.get_employee_workloads(db, org.id)

    assert [w.user_id for w in workloads] == [active.id]


def test_assign_ticket_rejects_ineligible_user(db, make_ticket, client_user, supervisor):
    ticket = make_ticket(client_user)

    with pytest.raises(ValidationError):
        assignment_service.assign_ticket(db, ticket, supervisor.id)


async def test_create_ticket_assigns_and_notifies(
    db, org, dispatcher, client_user, three_agents, make_ticket, email_channel
):
    first, second, third = three_agents
    _load(make_ticket, client_user, first, 1)
    _load(make_ticket, client_user, third, 1)

    ticket = await ticket_service.create_ticket(
        db, org.id, client_user.id, "VPN down", dispatcher=dispatcher
    )

    assert ticket.assigned_user_id == second.id
    assert ticket.status == TicketStatus.PENDING.value
    assert ticket.alert_level == AlertLevel.GREEN.value
    assert ticket.escalation_started_at is not None

    notification = db.query(Notification).filter(Notification.user_id == second.id).one()
    assert notification.type == NotificationType.TICKET_ASSIGNED.value
    assert notification.details == {"ticket_id": str(ticket.id)}
    assert len(email_channel.delivered_to(second.id)) == 1


async def test_create_ticket_without_employees_stays_unassigned(db, org, dispatcher, client_user):
    ticket = await ticket_service.create_ticket(
        db, org.id, client_user.id, "VPN down", dispatcher=dispatcher
    )

    assert ticket.assigned_user_id is None
    assert db.query(Notification).count() == 0


def test_change_status_stamps_final_state(db, make_ticket, client_user):
    ticket = make_ticket(client_user, status=TicketStatus.IN_PROGRESS)
    resolved_at = BASE_TIME + timedelta(hours=1)

    ticket_service.change_status(db, ticket, TicketStatus.RESOLVED, now=resolved_at)
    assert ticket.final_state_reached_at is not None

    ticket_service.change_status(db, ticket, TicketStatus.CLOSED, now=resolved_at + timedelta(hours=1))
    assert ticket.final_state_reached_at.replace(tzinfo=None) == resolved_at.replace(tzinfo=None)

    ticket_service.change_status(db, ticket, TicketStatus.IN_PROGRESS)
    assert ticket.final_state_reached_at is None


def test_client_upload_window(db, make_ticket, client_user, agent):
    ticket = make_ticket(client_user, status=TicketStatus.IN_PROGRESS)
    now = BASE_TIME

    ticket_service.open_client_upload_window(
        db, ticket, agent.id, "Please send a clearer photo", hours=2, now=now
    )

    assert ticket_service.is_client_upload_open(ticket, now=now + timedelta(hours=1))
    assert not ticket_service.is_client_upload_open(ticket, now=now + timedelta(hours=3))

    ticket_service.close_client_upload_window(db, ticket)
    assert not ticket_service.is_client_upload_open(ticket, now=now)

    with pytest.raises(ValidationError):
        ticket_service.open_client_upload_window(db, ticket, agent.id, "again", hours=0)
