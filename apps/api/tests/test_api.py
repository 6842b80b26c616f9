"""HTTP-level tests for the lifecycle endpoints."""

import uuid
from datetime import timedelta

import pytest

from incident_engine.db.enums import AlertLevel, NotificationType, TicketStatus
from incident_engine.routers.websocket import _can_watch_ticket, _parse
from incident_engine.schemas.notifications import NotificationPayload
from incident_engine.services import notification_service
from incident_engine.utils.time import utcnow

REASON = "The issue is back after the last update"


@pytest.fixture
def recently_resolved(make_ticket, client_user, agent):
    return make_ticket(
        client_user,
        status=TicketStatus.RESOLVED,
        assigned_to=agent,
        final_state_reached_at=utcnow() - timedelta(days=1),
    )


async def test_requires_authentication(client):
    response = await client.get("/me/notifications")
    assert response.status_code == 401


async def test_rejects_garbage_token(client):
    response = await client.get("/me/notifications", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401


async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


# =============================================================================
# Reopen workflow
# =============================================================================

async def test_reopen_round_trip(
    client, auth_headers, recently_resolved, client_user, supervisor, background
):
    response = await client.post(
        f"/tickets/{recently_resolved.id}/reopen-requests",
        json={"reason": REASON},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 201
    request_id = response.json()["id"]
    assert response.json()["status"] == "pending"

    duplicate = await client.post(
        f"/tickets/{recently_resolved.id}/reopen-requests",
        json={"reason": REASON},
        headers=auth_headers(client_user),
    )
    assert duplicate.status_code == 409

    pending = await client.get("/reopen-requests/pending", headers=auth_headers(supervisor))
    assert pending.status_code == 200
    assert pending.json()["total"] == 1

    short_rejection = await client.post(
        f"/reopen-requests/{request_id}/review",
        json={"decision": "rejected", "notes": "nope"},
        headers=auth_headers(supervisor),
    )
    assert short_rejection.status_code == 422

    approved = await client.post(
        f"/reopen-requests/{request_id}/review",
        json={"decision": "approved"},
        headers=auth_headers(supervisor),
    )
    assert approved.status_code == 200
    body = approved.json()
    assert body["request"]["status"] == "approved"
    assert body["ticket_status"] == TicketStatus.IN_PROGRESS.value
    assert body["alert_level"] == AlertLevel.GREEN.value

    again = await client.post(
        f"/reopen-requests/{request_id}/review",
        json={"decision": "approved"},
        headers=auth_headers(supervisor),
    )
    assert again.status_code == 409

    await background.drain(timeout=2.0)


async def test_reopen_by_non_creator_is_forbidden(client, auth_headers, recently_resolved, agent):
    response = await client.post(
        f"/tickets/{recently_resolved.id}/reopen-requests",
        json={"reason": REASON},
        headers=auth_headers(agent),
    )
    assert response.status_code == 403


async def test_reopen_unknown_ticket(client, auth_headers, client_user):
    response = await client.post(
        f"/tickets/{uuid.uuid4()}/reopen-requests",
        json={"reason": REASON},
        headers=auth_headers(client_user),
    )
    assert response.status_code == 404


async def test_review_without_permission_is_forbidden(
    client, auth_headers, recently_resolved, client_user, agent
):
    created = await client.post(
        f"/tickets/{recently_resolved.id}/reopen-requests",
        json={"reason": REASON},
        headers=auth_headers(client_user),
    )

    response = await client.post(
        f"/reopen-requests/{created.json()['id']}/review",
        json={"decision": "approved"},
        headers=auth_headers(agent),
    )
    assert response.status_code == 403


async def test_pending_listing_requires_permission(client, auth_headers, agent):
    response = await client.get("/reopen-requests/pending", headers=auth_headers(agent))
    assert response.status_code == 403


# =============================================================================
# Notifications
# =============================================================================

async def test_notification_inbox(client, auth_headers, db, org, agent):
    for n in range(3):
        notification_service.create_notification(
            db,
            org.id,
            agent.id,
            NotificationPayload(title=f"Alert {n}", message="Ticket waiting", type=NotificationType.TICKET_ALERT),
        )

    listing = await client.get("/me/notifications", headers=auth_headers(agent))
    assert listing.status_code == 200
    assert listing.json()["total"] == 3
    assert listing.json()["unread_count"] == 3

    first_id = listing.json()["items"][0]["id"]
    marked = await client.patch(f"/me/notifications/{first_id}/read", headers=auth_headers(agent))
    assert marked.status_code == 200
    assert marked.json()["is_read"] is True

    count = await client.get("/me/notifications/count", headers=auth_headers(agent))
    assert count.json() == {"count": 2}

    read_all = await client.post("/me/notifications/read-all", headers=auth_headers(agent))
    assert read_all.json() == {"marked_read": 2}

    cleared = await client.delete("/me/notifications/read", headers=auth_headers(agent))
    assert cleared.json() == {"deleted": 3}


async def test_mark_read_of_someone_elses_notification(client, auth_headers, db, org, agent, supervisor):
    notification = notification_service.create_notification(
        db, org.id, agent.id, NotificationPayload(title="Mine", message="Only mine")
    )

    response = await client.patch(
        f"/me/notifications/{notification.id}/read", headers=auth_headers(supervisor)
    )
    assert response.status_code == 404


# =============================================================================
# Channels
# =============================================================================

async def test_channel_preferences_endpoints(client, auth_headers, agent):
    listing = await client.get("/me/channels", headers=auth_headers(agent))
    assert listing.status_code == 200
    assert [c["channel_type"] for c in listing.json()] == ["websocket", "email"]

    disabled = await client.patch(
        "/me/channels/email", json={"is_enabled": False}, headers=auth_headers(agent)
    )
    assert disabled.status_code == 200
    assert disabled.json()["is_enabled"] is False


async def test_unregistered_channel_is_not_found(client, auth_headers, agent):
    response = await client.patch(
        "/me/channels/telegram", json={"is_enabled": True}, headers=auth_headers(agent)
    )
    assert response.status_code == 404


# =============================================================================
# Ops
# =============================================================================

async def test_alert_scan_endpoint(client, auth_headers, db, make_ticket, client_user, agent, supervisor):
    ticket = make_ticket(client_user, assigned_to=agent)

    response = await client.post("/ops/alerts/scan", headers=auth_headers(supervisor))

    assert response.status_code == 200
    body = response.json()
    assert body["skipped"] is False
    assert body["result"]["updated"] == 1
    assert body["result"]["changes"][0]["current"] == "red"
    db.refresh(ticket)
    assert ticket.alert_level == AlertLevel.RED.value


async def test_alert_scan_requires_permission(client, auth_headers, agent):
    response = await client.post("/ops/alerts/scan", headers=auth_headers(agent))
    assert response.status_code == 403


async def test_evaluate_ticket_endpoint(client, auth_headers, make_ticket, client_user, supervisor):
    ticket = make_ticket(client_user)

    first = await client.post(f"/ops/alerts/tickets/{ticket.id}/evaluate", headers=auth_headers(supervisor))
    second = await client.post(f"/ops/alerts/tickets/{ticket.id}/evaluate", headers=auth_headers(supervisor))

    assert first.json()["changed"] is True
    assert second.json() == {"changed": False, "change": None}


async def test_workload_endpoint(client, auth_headers, make_ticket, client_user, agent, supervisor):
    make_ticket(client_user, status=TicketStatus.IN_PROGRESS, assigned_to=agent)

    response = await client.get("/ops/workload", headers=auth_headers(supervisor))

    assert response.json() == {
        "items": [{"user_id": str(agent.id), "display_name": agent.display_name, "open_tickets": 1}],
        "least_loaded_user_id": str(agent.id),
    }


async def test_scheduler_stats_endpoint(client, auth_headers, supervisor):
    response = await client.get("/ops/scheduler", headers=auth_headers(supervisor))

    assert response.status_code == 200
    assert response.json()["alert_scan"]["name"] == "alert-scan"
    assert response.json()["connections"] == 0


# =============================================================================
# WebSocket helpers
# =============================================================================

def test_parse_client_messages():
    assert _parse("ping") == {"type": "ping"}
    assert _parse('{"type": "join_ticket", "ticket_id": "x"}')["type"] == "join_ticket"
    assert _parse("not json") == {}
    assert _parse("[1, 2]") == {}


def test_ticket_room_access(session_factory, make_ticket, make_user, client_role, client_user, agent, supervisor):
    ticket = make_ticket(client_user, assigned_to=agent)
    stranger = make_user("Stranger", role=client_role)

    assert _can_watch_ticket(session_factory, client_user.id, ticket.id)
    assert _can_watch_ticket(session_factory, agent.id, ticket.id)
    assert _can_watch_ticket(session_factory, supervisor.id, ticket.id)
    assert not _can_watch_ticket(session_factory, stranger.id, ticket.id)
    assert not _can_watch_ticket(session_factory, client_user.id, uuid.uuid4())
