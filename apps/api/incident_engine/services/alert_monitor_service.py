"""
Alert Monitor - periodic re-evaluation of open ticket alert levels.

For every open, active ticket the level is recomputed from the escalation
clock. A changed level is committed together with the assignee's
notification record, then broadcast to the ticket room. A failed notify
rolls the level back so the next tick retries it. One failing ticket never
stops the scan.
"""

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from incident_engine.core.structured_logging import build_log_context
from incident_engine.core.websocket import ConnectionManager
from incident_engine.db.enums import OPEN_TICKET_STATUSES, AlertLevel, NotificationType, TicketStatus
from incident_engine.db.models import Ticket
from incident_engine.schemas.notifications import NotificationPayload
from incident_engine.services import ticket_service
from incident_engine.services.escalation import (
    DEFAULT_THRESHOLDS,
    AlertThresholds,
    describe_level,
    elapsed_minutes,
    level_for,
    priority_for,
)
from incident_engine.services.notification_service import NotificationDispatcher
from incident_engine.utils.time import utcnow

logger = logging.getLogger(__name__)

ALERT_CHANGED_EVENT = "alertLevelChanged"

ALERT_TITLES: dict[AlertLevel, str] = {
    AlertLevel.YELLOW: "Ticket waiting for attention",
    AlertLevel.ORANGE: "Ticket delayed",
    AlertLevel.RED: "Critical ticket: urgent attention required",
}


@dataclass
class ScanResult:
    """Aggregate counters of one scan."""

    scanned: int = 0
    updated: int = 0
    notified: int = 0
    failures: int = 0
    duration_ms: float = 0.0
    changes: list["LevelChange"] = field(default_factory=list)

    def as_dict(self) -> dict:
        data = asdict(self)
        data["changes"] = [change.as_dict() for change in self.changes]
        return data


@dataclass(frozen=True)
class LevelChange:
    ticket_id: UUID
    previous: AlertLevel
    current: AlertLevel
    elapsed_minutes: int
    notified: bool

    def as_dict(self) -> dict:
        return {
            "ticket_id": str(self.ticket_id),
            "previous": self.previous.value,
            "current": self.current.value,
            "elapsed_minutes": self.elapsed_minutes,
            "notified": self.notified,
        }


class AlertMonitor:
    """Evaluates alert levels and fans out the resulting side effects."""

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: NotificationDispatcher,
        connections: ConnectionManager,
        thresholds: AlertThresholds = DEFAULT_THRESHOLDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._connections = connections
        self.thresholds = thresholds
        self._clock = clock

    async def run_scan(self, now: datetime | None = None) -> ScanResult:
        """Re-evaluate every open, active ticket once."""
        started = time.monotonic()
        now = now or self._clock()
        result = ScanResult()

        with self._session_factory() as db:
            tickets = ticket_service.list_open_tickets(db)
            for ticket in tickets:
                result.scanned += 1
                ticket_id = ticket.id
                try:
                    change = await self._evaluate(db, ticket, now)
                except Exception as exc:
                    db.rollback()
                    result.failures += 1
                    logger.error(
                        "Alert evaluation failed for ticket %s: %s",
                        ticket_id,
                        type(exc).__name__,
                        exc_info=exc,
                        extra=build_log_context(ticket_id=ticket_id),
                    )
                    continue
                if change is None:
                    continue
                result.updated += 1
                result.changes.append(change)
                if change.notified:
                    result.notified += 1

        result.duration_ms = round((time.monotonic() - started) * 1000, 2)
        logger.info(
            "Alert scan finished: scanned=%d updated=%d notified=%d failures=%d duration_ms=%.2f",
            result.scanned,
            result.updated,
            result.notified,
            result.failures,
            result.duration_ms,
        )
        return result

    async def evaluate_ticket(
        self,
        ticket_id: UUID,
        org_id: UUID | None = None,
        now: datetime | None = None,
    ) -> LevelChange | None:
        """
        Forced re-evaluation of one ticket. Idempotent.

        Raises:
            NotFoundError: ticket absent or in another organization
        """
        with self._session_factory() as db:
            ticket = ticket_service.get_ticket(db, ticket_id, org_id)
            return await self._evaluate(db, ticket, now or self._clock())

    async def _evaluate(self, db: Session, ticket: Ticket, now: datetime) -> LevelChange | None:
        if not ticket.is_active or TicketStatus(ticket.status) not in OPEN_TICKET_STATUSES:
            return None

        minutes = elapsed_minutes(ticket.escalation_origin, now)
        current = level_for(minutes, self.thresholds)
        previous = AlertLevel(ticket.alert_level)
        # Levels only move forward on the clock; resets come from an approved reopen
        if current.rank <= previous.rank:
            return None

        ticket.alert_level = current.value
        notified = False
        priority = priority_for(current)
        if ticket.assigned_user_id and priority is not None:
            # The notification record commits together with the new level
            await self._dispatcher.send_to_user(
                db,
                ticket.assigned_user_id,
                ticket.organization_id,
                NotificationPayload(
                    title=ALERT_TITLES[current],
                    message=(
                        f"Ticket \"{ticket.title}\" is {describe_level(current)}: "
                        f"{minutes} minutes without resolution."
                    ),
                    type=NotificationType.TICKET_ALERT,
                    priority=priority,
                    details={
                        "ticket_id": str(ticket.id),
                        "alert_level": current.value,
                        "elapsed_minutes": minutes,
                        "status": ticket.status,
                    },
                    action_url=ticket_service.ticket_action_url(ticket.id),
                ),
            )
            notified = True
        else:
            db.commit()

        logger.warning(
            "Alert level changed for ticket %s: %s -> %s after %d minutes",
            ticket.id,
            previous.value,
            current.value,
            minutes,
            extra=build_log_context(ticket_id=ticket.id, org_id=ticket.organization_id),
        )
        await self._broadcast_change(ticket, previous, current, minutes)

        return LevelChange(
            ticket_id=ticket.id,
            previous=previous,
            current=current,
            elapsed_minutes=minutes,
            notified=notified,
        )

    async def _broadcast_change(
        self, ticket: Ticket, previous: AlertLevel, current: AlertLevel, minutes: int
    ) -> None:
        try:
            await self._connections.broadcast_to_ticket_room(
                ticket.id,
                ALERT_CHANGED_EVENT,
                {
                    "ticket_id": str(ticket.id),
                    "previous": previous.value,
                    "alert_level": current.value,
                    "elapsed_minutes": minutes,
                },
            )
        except Exception as exc:
            logger.warning("Alert broadcast failed for ticket %s: %s", ticket.id, type(exc).__name__)
