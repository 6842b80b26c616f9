"""Tests for periodic alert level re-evaluation."""

import uuid
from datetime import timedelta

import pytest

from conftest import BASE_TIME

from incident_engine.core.errors import NotFoundError
from incident_engine.db.enums import AlertLevel, NotificationPriority, NotificationType, TicketStatus
from incident_engine.db.models import Notification, Organization
from incident_engine.services import assignment_service
from incident_engine.services.alert_monitor_service import ALERT_CHANGED_EVENT


def _notifications(db, user):
    return (
        db.query(Notification)
        .filter(Notification.user_id == user.id)
        .order_by(Notification.created_at)
        .all()
    )


async def test_escalation_over_time_notifies_assignee(
    db, alert_monitor, make_ticket, client_user, agent, email_channel
):
    """T0 green, T0+4 orange, T0+6 red; one notification per change."""
    ticket = make_ticket(client_user, assigned_to=agent, created_at=BASE_TIME)

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(seconds=30))
    assert result.scanned == 1
    assert result.updated == 0

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=4))
    assert result.updated == 1
    assert result.notified == 1
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.ORANGE.value

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=6))
    assert result.changes[0].previous == AlertLevel.ORANGE
    assert result.changes[0].current == AlertLevel.RED
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.RED.value

    notifications = _notifications(db, agent)
    assert [n.priority for n in notifications] == [
        NotificationPriority.HIGH.value,
        NotificationPriority.URGENT.value,
    ]
    assert {n.type for n in notifications} == {NotificationType.TICKET_ALERT.value}
    assert notifications[-1].details["alert_level"] == "red"
    assert notifications[-1].details["elapsed_minutes"] == 6
    assert len(email_channel.delivered_to(agent.id)) == 2


async def test_rescan_without_time_change_is_idempotent(
    db, alert_monitor, make_ticket, client_user, agent
):
    make_ticket(client_user, assigned_to=agent, created_at=BASE_TIME)
    now = BASE_TIME + timedelta(minutes=2)

    first = await alert_monitor.run_scan(now=now)
    second = await alert_monitor.run_scan(now=now)

    assert first.updated == 1
    assert second.updated == 0
    assert len(_notifications(db, agent)) == 1


async def test_level_never_moves_backwards(db, alert_monitor, make_ticket, client_user, agent):
    ticket = make_ticket(
        client_user,
        assigned_to=agent,
        created_at=BASE_TIME,
        alert_level=AlertLevel.RED,
    )

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=2))

    assert result.updated == 0
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.RED.value


async def test_unassigned_ticket_changes_level_without_notification(
    db, alert_monitor, make_ticket, client_user
):
    ticket = make_ticket(client_user, created_at=BASE_TIME)

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=3))

    assert result.updated == 1
    assert result.notified == 0
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.YELLOW.value
    assert db.query(Notification).count() == 0


@pytest.mark.parametrize(
    "status", [TicketStatus.RESOLVED, TicketStatus.CLOSED, TicketStatus.CANCELLED]
)
async def test_terminal_tickets_are_not_scanned(
    db, alert_monitor, make_ticket, client_user, agent, status
):
    ticket = make_ticket(client_user, status=status, assigned_to=agent, created_at=BASE_TIME)

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(hours=2))

    assert result.scanned == 0
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.GREEN.value


async def test_clock_starts_at_escalation_origin(db, alert_monitor, make_ticket, client_user, agent):
    restarted = BASE_TIME + timedelta(days=3)
    ticket = make_ticket(
        client_user,
        status=TicketStatus.IN_PROGRESS,
        assigned_to=agent,
        created_at=BASE_TIME,
        escalation_started_at=restarted,
    )

    result = await alert_monitor.run_scan(now=restarted + timedelta(seconds=45))

    assert result.updated == 0
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.GREEN.value


async def test_change_is_broadcast_to_ticket_room(
    alert_monitor, make_ticket, client_user, agent, watch_ticket
):
    ticket = make_ticket(client_user, assigned_to=agent, created_at=BASE_TIME)
    ws = await watch_ticket(client_user, ticket)

    await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=10))

    events = ws.events_of(ALERT_CHANGED_EVENT)
    assert events == [
        {
            "ticket_id": str(ticket.id),
            "previous": "green",
            "alert_level": "red",
            "elapsed_minutes": 10,
        }
    ]


async def test_one_failing_ticket_does_not_stop_the_scan(
    db, alert_monitor, dispatcher, make_ticket, make_user, agent_role, client_user, monkeypatch
):
    broken_agent = make_user("Broken Agent", role=agent_role)
    healthy_agent = make_user("Healthy Agent", role=agent_role)
    broken = make_ticket(client_user, assigned_to=broken_agent, created_at=BASE_TIME, title="first")
    healthy = make_ticket(
        client_user,
        assigned_to=healthy_agent,
        created_at=BASE_TIME + timedelta(seconds=1),
        title="second",
    )

    original = dispatcher.send_to_user

    async def flaky_send(session, user_id, org_id, payload):
        if user_id == broken_agent.id:
            raise RuntimeError("database hiccup")
        return await original(session, user_id, org_id, payload)

    monkeypatch.setattr(dispatcher, "send_to_user", flaky_send)

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=7))

    assert result.scanned == 2
    assert result.failures == 1
    assert result.updated == 1
    db.refresh(healthy)
    assert healthy.alert_level == AlertLevel.RED.value
    assert len(_notifications(db, healthy_agent)) == 1
    db.refresh(broken)
    assert broken.alert_level == AlertLevel.GREEN.value


async def test_failed_notification_is_retried_on_next_scan(
    db, alert_monitor, dispatcher, make_ticket, client_user, agent, monkeypatch
):
    ticket = make_ticket(client_user, assigned_to=agent, created_at=BASE_TIME)
    now = BASE_TIME + timedelta(minutes=4)
    original = dispatcher.send_to_user

    async def failing_send(session, user_id, org_id, payload):
        raise RuntimeError("database hiccup")

    monkeypatch.setattr(dispatcher, "send_to_user", failing_send)
    result = await alert_monitor.run_scan(now=now)

    assert result.failures == 1
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.GREEN.value

    monkeypatch.setattr(dispatcher, "send_to_user", original)
    result = await alert_monitor.run_scan(now=now)

    assert result.updated == 1
    assert result.notified == 1
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.ORANGE.value
    [notification] = _notifications(db, agent)
    assert notification.priority == NotificationPriority.HIGH.value


async def test_evaluate_ticket_is_scoped_to_organization(
    db, alert_monitor, make_ticket, client_user
):
    ticket = make_ticket(client_user, created_at=BASE_TIME)
    other_org = Organization(name="Other")
    db.add(other_org)
    db.commit()

    with pytest.raises(NotFoundError):
        await alert_monitor.evaluate_ticket(ticket.id, org_id=other_org.id)
    with pytest.raises(NotFoundError):
        await alert_monitor.evaluate_ticket(uuid.uuid4())


async def test_evaluate_ticket_is_idempotent(alert_monitor, make_ticket, client_user, org):
    ticket = make_ticket(client_user, created_at=BASE_TIME)
    now = BASE_TIME + timedelta(minutes=5)

    change = await alert_monitor.evaluate_ticket(ticket.id, org_id=org.id, now=now)
    assert change.current == AlertLevel.ORANGE
    assert await alert_monitor.evaluate_ticket(ticket.id, org_id=org.id, now=now) is None


async def test_unassigned_then_assigned_end_to_end(
    db, alert_monitor, make_ticket, client_user, agent, watch_ticket
):
    ticket = make_ticket(client_user, created_at=BASE_TIME)
    ws = await watch_ticket(client_user, ticket)

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=4))
    assert result.changes[0].current == AlertLevel.ORANGE
    assert result.notified == 0
    assert [e["alert_level"] for e in ws.events_of(ALERT_CHANGED_EVENT)] == ["orange"]

    assignment_service.assign_ticket(db, ticket, agent.id)

    result = await alert_monitor.run_scan(now=BASE_TIME + timedelta(minutes=6))
    assert result.changes[0].previous == AlertLevel.ORANGE
    assert result.changes[0].current == AlertLevel.RED
    assert result.notified == 1

    [notification] = _notifications(db, agent)
    assert notification.priority == NotificationPriority.URGENT.value
    assert [e["alert_level"] for e in ws.events_of(ALERT_CHANGED_EVENT)] == ["orange", "red"]
