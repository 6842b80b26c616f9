"""
WebSocket connection manager for real-time push.

Tracks live connections per user and named rooms (``user:{id}``,
``ticket:{id}``). Process-local: several API instances need an external
pub/sub fan-out to reach sockets held by another process.
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, Set
from uuid import UUID

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Close code sent when the bearer credential is missing or invalid
WS_CLOSE_INVALID_TOKEN = 4001

TokenValidator = Callable[[str | None], UUID | None]


def user_room(user_id: UUID) -> str:
    return f"user:{user_id}"


def ticket_room(ticket_id: UUID) -> str:
    return f"ticket:{ticket_id}"


class ConnectionManager:
    """Manages WebSocket connections per user and per room."""

    def __init__(self, token_validator: TokenValidator):
        self._validate_token = token_validator
        # user_id -> set of active WebSocket connections
        self._connections: Dict[UUID, Set[WebSocket]] = {}
        # websocket -> owning user_id
        self._owners: Dict[WebSocket, UUID] = {}
        # room name -> set of joined connections
        self._rooms: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, token: str | None) -> UUID | None:
        """
        Validate the credential, then accept and register the connection.

        Returns the user id, or None when the socket was closed unregistered.
        """
        user_id = self._validate_token(token)
        if user_id is None:
            await websocket.close(code=WS_CLOSE_INVALID_TOKEN, reason="Invalid token")
            return None

        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(websocket)
            self._owners[websocket] = user_id
            self._rooms.setdefault(user_room(user_id), set()).add(websocket)
        logger.debug("WebSocket connected user=%s total=%d", user_id, self.total_connections)
        return user_id

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a connection from its user and from every room."""
        async with self._lock:
            self._forget(websocket)

    def _forget(self, websocket: WebSocket) -> None:
        user_id = self._owners.pop(websocket, None)
        if user_id is not None and user_id in self._connections:
            self._connections[user_id].discard(websocket)
            if not self._connections[user_id]:
                del self._connections[user_id]
        for room in [name for name, members in self._rooms.items() if websocket in members]:
            self._rooms[room].discard(websocket)
            if not self._rooms[room]:
                del self._rooms[room]

    async def join_room(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            if websocket not in self._owners:
                return
            self._rooms.setdefault(room, set()).add(websocket)

    async def leave_room(self, websocket: WebSocket, room: str) -> None:
        async with self._lock:
            members = self._rooms.get(room)
            if not members:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]

    async def send_to_user(self, user_id: UUID, event: str, data: Any) -> int:
        """Push an event to every connection of a user. Returns sockets reached."""
        async with self._lock:
            connections = self._connections.get(user_id, set()).copy()
        return await self._send_many(connections, event, data)

    async def broadcast_to_room(self, room: str, event: str, data: Any) -> int:
        async with self._lock:
            connections = self._rooms.get(room, set()).copy()
        return await self._send_many(connections, event, data)

    async def broadcast_to_ticket_room(self, ticket_id: UUID, event: str, data: Any) -> int:
        """Push an event to every client watching a ticket conversation."""
        return await self.broadcast_to_room(ticket_room(ticket_id), event, data)

    async def _send_many(self, connections: Set[WebSocket], event: str, data: Any) -> int:
        if not connections:
            return 0

        text = json.dumps({"type": event, "data": data}, default=str)
        closed = []
        delivered = 0

        for ws in connections:
            try:
                await ws.send_text(text)
                delivered += 1
            except Exception:
                # Connection closed or errored
                closed.append(ws)

        # Clean up closed connections
        if closed:
            async with self._lock:
                for ws in closed:
                    self._forget(ws)
        return delivered

    def is_user_connected(self, user_id: UUID) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self, user_id: UUID) -> int:
        """Get the number of active connections for a user."""
        return len(self._connections.get(user_id, set()))

    @property
    def total_connections(self) -> int:
        """Total number of active connections across all users."""
        return sum(len(conns) for conns in self._connections.values())

    def room_size(self, room: str) -> int:
        return len(self._rooms.get(room, set()))

    async def shutdown(self) -> None:
        """Close every registered connection and clear all state."""
        async with self._lock:
            sockets = list(self._owners)
            self._connections.clear()
            self._owners.clear()
            self._rooms.clear()

        for ws in sockets:
            try:
                await ws.close(code=1001, reason="Server shutting down")
            except Exception as exc:
                logger.debug("Ignoring close failure during shutdown: %s", exc)
