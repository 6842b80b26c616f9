"""
Test configuration and fixtures.

Provides:
- File-backed SQLite database per test (background sessions share it)
- Organization, role, user and ticket factories
- In-memory WebSocket and channel doubles
- Runtime wired to the test database, plus an HTTPX AsyncClient
"""
import asyncio
import itertools
import json
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# The scan ticker must not start behind the tests' back
os.environ["ALERT_SCAN_ENABLED"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session, sessionmaker

from incident_engine.core.background import BackgroundTaskRunner
from incident_engine.core.config import settings
from incident_engine.core.deps import get_db
from incident_engine.core.permissions import REOPEN_TICKETS, RUN_ALERT_SCAN, VIEW_TICKETS
from incident_engine.core.runtime import Runtime
from incident_engine.core.security import create_session_token, resolve_user_id
from incident_engine.core.websocket import ConnectionManager
from incident_engine.db.base import Base
from incident_engine.db.enums import AlertLevel, ChannelType, TicketStatus
from incident_engine.db.models import Membership, Organization, Role, RolePermission, Ticket, User
from incident_engine.db.session import build_engine
from incident_engine.jobs.alert_scan import build_alert_scan_task
from incident_engine.services.alert_monitor_service import AlertMonitor
from incident_engine.services.channels.base import NotificationChannel
from incident_engine.services.channels.realtime import RealtimeChannel
from incident_engine.services.channels.registry import ChannelRegistry
from incident_engine.services.notification_service import NotificationDispatcher
from incident_engine.services.reopen_request_service import ReopenWorkflow

BASE_TIME = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Test doubles
# =============================================================================

class FakeWebSocket:
    """Records what the connection manager sends and how it closes."""

    def __init__(self, fail_on_send: bool = False):
        self.fail_on_send = fail_on_send
        self.accepted = False
        self.close_code: int | None = None
        self.sent: list[dict] = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text: str):
        if self.fail_on_send:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str | None = None):
        self.close_code = code

    @property
    def event_types(self) -> list[str]:
        return [message["type"] for message in self.sent]

    def events_of(self, event: str) -> list[dict]:
        return [message["data"] for message in self.sent if message["type"] == event]


class FakeChannel(NotificationChannel):
    """Channel double with scripted availability, failures and latency."""

    def __init__(
        self,
        channel_type: ChannelType,
        *,
        enabled: bool = True,
        error: Exception | None = None,
        delay: float = 0.0,
    ):
        self.channel_type = channel_type
        self.enabled = enabled
        self.error = error
        self.delay = delay
        self.delivered: list[tuple] = []

    async def is_enabled_for(self, recipient, config):
        return self.enabled

    async def deliver(self, recipient, notification, config):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        self.delivered.append((recipient.user_id, notification))

    def delivered_to(self, user_id) -> list:
        return [notification for uid, notification in self.delivered if uid == user_id]


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'incident_engine.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture(scope="function")
def org(db: Session) -> Organization:
    organization = Organization(name="Acme Support")
    db.add(organization)
    db.commit()
    return organization


@pytest.fixture(scope="function")
def make_role(db: Session, org: Organization):
    def _make(
        name: str,
        permissions: tuple[str, ...] = (),
        can_receive_tickets: bool = False,
        organization: Organization | None = None,
    ) -> Role:
        role = Role(
            organization_id=(organization or org).id,
            name=name,
            can_receive_tickets=can_receive_tickets,
        )
        role.permissions = [RolePermission(permission=p) for p in permissions]
        db.add(role)
        db.commit()
        return role

    return _make


@pytest.fixture(scope="function")
def make_user(db: Session, org: Organization):
    # Explicit, increasing creation times keep discovery order deterministic
    clock = itertools.count(1)

    def _make(
        display_name: str,
        role: Role | None = None,
        organization: Organization | None = None,
        email: str | None = "auto",
        is_active: bool = True,
    ) -> User:
        tick = next(clock)
        user = User(
            display_name=display_name,
            email=f"user{tick}-{display_name.lower().replace(' ', '.')}@example.com" if email == "auto" else email,
            is_active=is_active,
            created_at=BASE_TIME + timedelta(seconds=tick),
        )
        db.add(user)
        db.flush()
        db.add(
            Membership(
                user_id=user.id,
                organization_id=(organization or org).id,
                role_id=role.id if role else None,
            )
        )
        db.commit()
        return user

    return _make


@pytest.fixture(scope="function")
def make_ticket(db: Session, org: Organization):
    def _make(
        created_by: User,
        status: TicketStatus = TicketStatus.PENDING,
        assigned_to: User | None = None,
        created_at: datetime | None = None,
        escalation_started_at: datetime | None = None,
        final_state_reached_at: datetime | None = None,
        alert_level: AlertLevel = AlertLevel.GREEN,
        organization: Organization | None = None,
        title: str = "Printer on fire",
    ) -> Ticket:
        ticket = Ticket(
            organization_id=(organization or org).id,
            title=title,
            status=status.value,
            alert_level=alert_level.value,
            created_by_user_id=created_by.id,
            assigned_user_id=assigned_to.id if assigned_to else None,
            created_at=created_at or BASE_TIME,
            escalation_started_at=escalation_started_at,
            final_state_reached_at=final_state_reached_at,
        )
        db.add(ticket)
        db.commit()
        return ticket

    return _make


@pytest.fixture(scope="function")
def agent_role(make_role) -> Role:
    return make_role("agent", permissions=(VIEW_TICKETS,), can_receive_tickets=True)


@pytest.fixture(scope="function")
def supervisor_role(make_role) -> Role:
    return make_role("supervisor", permissions=(VIEW_TICKETS, REOPEN_TICKETS, RUN_ALERT_SCAN))


@pytest.fixture(scope="function")
def client_role(make_role) -> Role:
    return make_role("client")


@pytest.fixture(scope="function")
def client_user(make_user, client_role) -> User:
    return make_user("Carla Client", role=client_role)


@pytest.fixture(scope="function")
def agent(make_user, agent_role) -> User:
    return make_user("Andy Agent", role=agent_role)


@pytest.fixture(scope="function")
def supervisor(make_user, supervisor_role) -> User:
    return make_user("Sam Supervisor", role=supervisor_role)


# =============================================================================
# Runtime Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def connections() -> ConnectionManager:
    return ConnectionManager(resolve_user_id)


@pytest.fixture(scope="function")
def email_channel() -> FakeChannel:
    return FakeChannel(ChannelType.EMAIL)


@pytest.fixture(scope="function")
def registry(connections, email_channel) -> ChannelRegistry:
    return ChannelRegistry([RealtimeChannel(connections), email_channel])


@pytest.fixture(scope="function")
def dispatcher(registry, connections) -> NotificationDispatcher:
    return NotificationDispatcher(registry, connections=connections, channel_timeout=0.5)


@pytest.fixture(scope="function")
async def background() -> AsyncGenerator[BackgroundTaskRunner, None]:
    runner = BackgroundTaskRunner()
    yield runner
    await runner.shutdown(timeout=1.0)


@pytest.fixture(scope="function")
def alert_monitor(session_factory, dispatcher, connections) -> AlertMonitor:
    return AlertMonitor(session_factory, dispatcher, connections)


@pytest.fixture(scope="function")
def reopen_workflow(session_factory, dispatcher, connections, background) -> ReopenWorkflow:
    return ReopenWorkflow(
        session_factory,
        dispatcher,
        connections,
        background,
        deadline=timedelta(days=10),
    )


@pytest.fixture(scope="function")
def runtime(
    session_factory,
    connections,
    registry,
    dispatcher,
    background,
    alert_monitor,
    reopen_workflow,
) -> Runtime:
    return Runtime(
        settings=settings,
        session_factory=session_factory,
        connections=connections,
        registry=registry,
        dispatcher=dispatcher,
        background=background,
        alert_monitor=alert_monitor,
        reopen_workflow=reopen_workflow,
        alert_scan=build_alert_scan_task(alert_monitor, settings),
    )


@pytest.fixture(scope="function")
def watch_ticket(connections):
    """Open a socket for ``user`` and join it to the ticket's room."""
    async def _watch(user: User, ticket: Ticket) -> FakeWebSocket:
        ws = FakeWebSocket()
        await connections.connect(ws, create_session_token(user.id, ticket.organization_id))
        await connections.join_room(ws, f"ticket:{ticket.id}")
        return ws

    return _watch


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def auth_headers(org: Organization):
    """Bearer header for a user of the default organization."""
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token(user.id, org.id)}"}

    return _headers


@pytest.fixture(scope="function")
async def client(db: Session, runtime: Runtime) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient bound to the test database and runtime."""
    from incident_engine.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.state.runtime = runtime

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
    app.state.runtime = None
