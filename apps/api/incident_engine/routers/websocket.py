"""
WebSocket router for real-time push.

Provides a WebSocket endpoint that:
1. Authenticates users via bearer token (query param) or session cookie
2. Keeps the connection registered in the user's private room
3. Lets clients join/leave ticket rooms they are allowed to see
"""

import json
import logging
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from incident_engine.core.deps import COOKIE_NAME
from incident_engine.core.errors import NotFoundError
from incident_engine.core.permissions import VIEW_TICKETS
from incident_engine.core.websocket import ticket_room
from incident_engine.services import permission_service, ticket_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


def _can_watch_ticket(session_factory, user_id: UUID, ticket_id: UUID) -> bool:
    """Creator, assignee, or a member holding view_tickets in the ticket's org."""
    with session_factory() as db:
        org_id = permission_service.get_user_org_id(db, user_id)
        if org_id is None:
            return False
        try:
            ticket = ticket_service.get_ticket(db, ticket_id, org_id)
        except NotFoundError:
            return False
        if user_id in (ticket.created_by_user_id, ticket.assigned_user_id):
            return True
        return permission_service.user_has_permission(db, user_id, org_id, VIEW_TICKETS)


def _parse(raw: str) -> dict:
    if raw == "ping":
        return {"type": "ping"}
    try:
        message = json.loads(raw)
    except ValueError:
        return {}
    return message if isinstance(message, dict) else {}


@router.websocket("/notifications")
async def websocket_notifications(
    websocket: WebSocket,
    token: str | None = Query(None),
):
    """
    WebSocket endpoint for real-time events.

    Client messages:
    - ``ping`` (or ``{"type": "ping"}``) -> ``pong``
    - ``{"type": "join_ticket", "ticket_id": ...}``
    - ``{"type": "leave_ticket", "ticket_id": ...}``
    """
    runtime = websocket.app.state.runtime
    manager = runtime.connections

    user_id = await manager.connect(websocket, token or websocket.cookies.get(COOKIE_NAME))
    if user_id is None:
        return

    try:
        while True:
            raw = await websocket.receive_text()
            message = _parse(raw)
            kind = message.get("type")

            if kind == "ping":
                if raw == "ping":
                    await websocket.send_text("pong")
                else:
                    await websocket.send_text(json.dumps({"type": "pong", "data": None}))
                continue

            if kind in ("join_ticket", "leave_ticket"):
                try:
                    ticket_id = UUID(str(message.get("ticket_id")))
                except ValueError:
                    await websocket.send_text(json.dumps({"type": "error", "data": {"detail": "Invalid ticket_id"}}))
                    continue

                room = ticket_room(ticket_id)
                if kind == "leave_ticket":
                    await manager.leave_room(websocket, room)
                    await websocket.send_text(json.dumps({"type": "left", "data": {"room": room}}))
                    continue

                if not _can_watch_ticket(runtime.session_factory, user_id, ticket_id):
                    await websocket.send_text(json.dumps({"type": "error", "data": {"detail": "Ticket not found"}}))
                    continue
                await manager.join_room(websocket, room)
                await websocket.send_text(json.dumps({"type": "joined", "data": {"room": room}}))
                continue

            logger.debug("Ignoring unknown websocket message type=%s", kind)
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)
