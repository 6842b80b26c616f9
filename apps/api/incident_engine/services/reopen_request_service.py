"""
Reopen Request Service - client petitions to reopen a finished ticket.

State machine per ticket: at most one PENDING request; a request becomes
APPROVED or REJECTED exactly once. Each transition is committed before any
side effect runs. Notification fan-out is submitted to the background
runner, so delivery failures are logged and never undo the transition.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from incident_engine.core.background import BackgroundTaskRunner
from incident_engine.core.config import settings
from incident_engine.core.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from incident_engine.core.permissions import REOPEN_TICKETS
from incident_engine.core.structured_logging import build_log_context
from incident_engine.core.websocket import ConnectionManager
from incident_engine.db.enums import (
    TERMINAL_TICKET_STATUSES,
    AlertLevel,
    NotificationPriority,
    NotificationType,
    ReopenRequestStatus,
    ReviewDecision,
    TicketStatus,
)
from incident_engine.db.models import ReopenRequest, Ticket, User
from incident_engine.schemas.notifications import NotificationPayload
from incident_engine.services import message_service, permission_service, ticket_service
from incident_engine.services.notification_service import NotificationDispatcher
from incident_engine.utils.pagination import PaginationParams, paginate_query
from incident_engine.utils.time import as_utc, utcnow

logger = logging.getLogger(__name__)

REQUEST_CREATED_EVENT = "reopenRequestCreated"
REQUEST_APPROVED_EVENT = "reopenRequestApproved"
REQUEST_REJECTED_EVENT = "reopenRequestRejected"
TICKET_REOPENED_EVENT = "ticketReopened"
CHAT_UNLOCKED_EVENT = "chatUnlocked"


# =============================================================================
# Reads
# =============================================================================


def get_request(db: Session, request_id: UUID, org_id: UUID) -> ReopenRequest:
    """
    Raises:
        NotFoundError: absent or in another organization
    """
    request = db.query(ReopenRequest).filter(
        ReopenRequest.id == request_id,
        ReopenRequest.organization_id == org_id,
    ).first()
    if not request:
        raise NotFoundError(f"Reopen request {request_id} not found")
    return request


def get_pending_requests(
    db: Session, org_id: UUID, pagination: PaginationParams
) -> tuple[list[ReopenRequest], int]:
    """Pending requests of an organization, newest first."""
    query = db.query(ReopenRequest).filter(
        ReopenRequest.organization_id == org_id,
        ReopenRequest.status == ReopenRequestStatus.PENDING.value,
    ).order_by(ReopenRequest.created_at.desc(), ReopenRequest.id.desc())
    return paginate_query(query, pagination)


def get_requests_for_ticket(db: Session, ticket_id: UUID, org_id: UUID) -> list[ReopenRequest]:
    """Every request of a ticket, newest first."""
    ticket_service.get_ticket(db, ticket_id, org_id)
    return (
        db.query(ReopenRequest)
        .filter(ReopenRequest.ticket_id == ticket_id)
        .order_by(ReopenRequest.created_at.desc(), ReopenRequest.id.desc())
        .all()
    )


def has_pending_request(db: Session, ticket_id: UUID) -> bool:
    return db.query(ReopenRequest.id).filter(
        ReopenRequest.ticket_id == ticket_id,
        ReopenRequest.status == ReopenRequestStatus.PENDING.value,
    ).first() is not None


# =============================================================================
# Workflow
# =============================================================================


@dataclass(frozen=True)
class ReviewResult:
    request: ReopenRequest
    ticket: Ticket


@dataclass(frozen=True)
class _Delivery:
    user_id: UUID
    payload: NotificationPayload


class ReopenWorkflow:
    """Creates and reviews reopen requests and runs their side effects."""

    def __init__(
        self,
        session_factory: sessionmaker,
        dispatcher: NotificationDispatcher,
        connections: ConnectionManager,
        background: BackgroundTaskRunner,
        deadline: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._connections = connections
        self._background = background
        self.deadline = deadline if deadline is not None else settings.reopen_deadline
        self._clock = clock

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create(
        self,
        db: Session,
        ticket_id: UUID,
        org_id: UUID,
        client_id: UUID,
        reason: str,
        now: datetime | None = None,
    ) -> ReopenRequest:
        """
        Open a PENDING reopen request for a finished ticket.

        Raises:
            NotFoundError: ticket absent or in another organization
            ForbiddenError: caller did not create the ticket
            ValidationError: bad reason, ticket not finished, deadline passed
            ConflictError: a request is already pending
        """
        now = now or self._clock()
        ticket = ticket_service.get_ticket(db, ticket_id, org_id)

        if ticket.created_by_user_id != client_id:
            raise ForbiddenError("Only the ticket creator can request a reopen")

        reason = _clean_text(
            reason,
            field="reason",
            min_length=settings.REOPEN_REASON_MIN_LENGTH,
        )

        if TicketStatus(ticket.status) not in TERMINAL_TICKET_STATUSES:
            raise ValidationError("Only resolved, closed or cancelled tickets can be reopened")

        if ticket.final_state_reached_at is not None:
            waited = as_utc(now) - as_utc(ticket.final_state_reached_at)
            if waited > self.deadline:
                raise ValidationError(
                    f"Reopen deadline of {self.deadline.days} days has passed"
                )

        if has_pending_request(db, ticket.id):
            raise ConflictError("A reopen request is already pending for this ticket")

        request = ReopenRequest(
            organization_id=org_id,
            ticket_id=ticket.id,
            requested_by_user_id=client_id,
            reason=reason,
            status=ReopenRequestStatus.PENDING.value,
            created_at=now,
        )
        db.add(request)
        try:
            db.commit()
        except IntegrityError:
            # Lost a race against a concurrent request for the same ticket
            db.rollback()
            raise ConflictError("A reopen request is already pending for this ticket")
        db.refresh(request)

        logger.info(
            "Reopen request %s created",
            request.id,
            extra=build_log_context(user_id=client_id, org_id=org_id, ticket_id=ticket.id),
        )

        self._append_message(
            db,
            ticket.id,
            client_id,
            f"Reopen requested for this ticket.\n\nReason: {reason}",
            {"reopen_request_id": str(request.id), "event": "reopen_requested"},
        )
        await self._broadcast(
            ticket.id,
            REQUEST_CREATED_EVENT,
            {
                "request_id": str(request.id),
                "ticket_id": str(ticket.id),
                "reason": reason,
                "requested_by": str(client_id),
                "timestamp": now.isoformat(),
            },
        )

        reviewers = permission_service.list_users_with_permission(db, org_id, REOPEN_TICKETS)
        payload = NotificationPayload(
            title="New reopen request",
            message=f"The client asks to reopen ticket \"{ticket.title}\". Reason: {reason}",
            type=NotificationType.REOPEN_REQUESTED,
            priority=NotificationPriority.HIGH,
            details={"ticket_id": str(ticket.id), "reopen_request_id": str(request.id)},
            action_url=ticket_service.ticket_action_url(ticket.id),
        )
        self._schedule(
            org_id,
            [_Delivery(user.id, payload) for user in reviewers if user.id != client_id],
            label=f"reopen-created:{request.id}",
        )
        return request

    # -------------------------------------------------------------------------
    # Review
    # -------------------------------------------------------------------------

    async def review(
        self,
        db: Session,
        request_id: UUID,
        org_id: UUID,
        reviewer_id: UUID,
        decision: ReviewDecision,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> ReviewResult:
        """
        Approve or reject a pending request.

        Raises:
            NotFoundError: request absent or in another organization
            ForbiddenError: reviewer lacks the reopen permission
            ConflictError: request already reviewed
            ValidationError: rejection without sufficient notes
        """
        now = now or self._clock()
        request = get_request(db, request_id, org_id)

        if not permission_service.user_has_permission(db, reviewer_id, org_id, REOPEN_TICKETS):
            raise ForbiddenError("Missing permission to review reopen requests")

        if request.status != ReopenRequestStatus.PENDING.value:
            raise ConflictError("Reopen request was already reviewed")

        if decision == ReviewDecision.REJECTED:
            notes = _clean_text(
                notes,
                field="notes",
                min_length=settings.REOPEN_REJECTION_NOTES_MIN_LENGTH,
            )
        elif notes is not None:
            notes = _clean_text(notes, field="notes", min_length=0) or None

        new_status = (
            ReopenRequestStatus.APPROVED
            if decision == ReviewDecision.APPROVED
            else ReopenRequestStatus.REJECTED
        )
        # Conditional update: only one reviewer can move the request out of PENDING
        claimed = db.query(ReopenRequest).filter(
            ReopenRequest.id == request.id,
            ReopenRequest.status == ReopenRequestStatus.PENDING.value,
        ).update(
            {
                ReopenRequest.status: new_status.value,
                ReopenRequest.reviewed_by_user_id: reviewer_id,
                ReopenRequest.review_notes: notes,
                ReopenRequest.reviewed_at: now,
            },
            synchronize_session=False,
        )
        if not claimed:
            db.rollback()
            raise ConflictError("Reopen request was already reviewed")

        ticket = ticket_service.get_ticket(db, request.ticket_id, org_id)
        previous_status = ticket.status
        if decision == ReviewDecision.APPROVED:
            ticket.status = TicketStatus.IN_PROGRESS.value
            ticket.final_state_reached_at = None
            ticket.alert_level = AlertLevel.GREEN.value
            ticket.escalation_started_at = now
        db.commit()
        db.refresh(request)
        db.refresh(ticket)

        logger.info(
            "Reopen request %s %s",
            request.id,
            new_status.value,
            extra=build_log_context(user_id=reviewer_id, org_id=org_id, ticket_id=ticket.id),
        )

        reviewer = db.query(User).filter(User.id == reviewer_id).first()
        reviewer_name = reviewer.display_name if reviewer else "staff"

        if decision == ReviewDecision.APPROVED:
            await self._after_approval(db, request, ticket, previous_status, reviewer_name, now)
        else:
            await self._after_rejection(db, request, ticket, reviewer_name, now)
        return ReviewResult(request=request, ticket=ticket)

    async def _after_approval(
        self,
        db: Session,
        request: ReopenRequest,
        ticket: Ticket,
        previous_status: str,
        reviewer_name: str,
        now: datetime,
    ) -> None:
        reviewer_id = request.reviewed_by_user_id
        self._append_message(
            db,
            ticket.id,
            reviewer_id,
            f"Reopen request approved by {reviewer_name}.\n\n"
            f"Notes: {request.review_notes or 'No additional notes'}",
            {"reopen_request_id": str(request.id), "event": "reopen_approved"},
        )

        await self._broadcast(
            ticket.id,
            REQUEST_APPROVED_EVENT,
            {
                "request_id": str(request.id),
                "ticket_id": str(ticket.id),
                "reviewed_by": str(reviewer_id),
                "timestamp": now.isoformat(),
            },
        )
        await self._broadcast(
            ticket.id,
            TICKET_REOPENED_EVENT,
            {
                "ticket_id": str(ticket.id),
                "status": ticket.status,
                "previous_status": previous_status,
                "timestamp": now.isoformat(),
            },
        )
        await self._broadcast(
            ticket.id,
            CHAT_UNLOCKED_EVENT,
            {"ticket_id": str(ticket.id), "status": ticket.status},
        )

        details = {"ticket_id": str(ticket.id), "reopen_request_id": str(request.id)}
        action_url = ticket_service.ticket_action_url(ticket.id)
        client_id = request.requested_by_user_id
        assignee_id = ticket.assigned_user_id

        deliveries = [
            _Delivery(
                client_id,
                NotificationPayload(
                    title="Your reopen request was approved",
                    message=f"Ticket \"{ticket.title}\" was reopened. Our team is working on it.",
                    type=NotificationType.REOPEN_APPROVED,
                    priority=NotificationPriority.NORMAL,
                    details=details,
                    action_url=action_url,
                ),
            )
        ]
        if assignee_id and assignee_id not in (reviewer_id, client_id):
            deliveries.append(
                _Delivery(
                    assignee_id,
                    NotificationPayload(
                        title="Ticket reopened",
                        message=f"Ticket \"{ticket.title}\" was reopened and needs your attention.",
                        type=NotificationType.REOPEN_APPROVED,
                        priority=NotificationPriority.NORMAL,
                        details=details,
                        action_url=action_url,
                    ),
                )
            )

        excluded = {reviewer_id, assignee_id, client_id}
        for holder in permission_service.list_users_with_permission(
            db, request.organization_id, REOPEN_TICKETS
        ):
            if holder.id in excluded:
                continue
            deliveries.append(
                _Delivery(
                    holder.id,
                    NotificationPayload(
                        title="Ticket reopened",
                        message=f"Ticket \"{ticket.title}\" was reopened.",
                        type=NotificationType.REOPEN_APPROVED,
                        priority=NotificationPriority.LOW,
                        details=details,
                        action_url=action_url,
                    ),
                )
            )

        self._schedule(request.organization_id, deliveries, label=f"reopen-approved:{request.id}")

    async def _after_rejection(
        self,
        db: Session,
        request: ReopenRequest,
        ticket: Ticket,
        reviewer_name: str,
        now: datetime,
    ) -> None:
        self._append_message(
            db,
            ticket.id,
            request.reviewed_by_user_id,
            f"Reopen request rejected by {reviewer_name}.\n\n"
            f"Reason for rejection: {request.review_notes}",
            {"reopen_request_id": str(request.id), "event": "reopen_rejected"},
        )
        await self._broadcast(
            ticket.id,
            REQUEST_REJECTED_EVENT,
            {
                "request_id": str(request.id),
                "ticket_id": str(ticket.id),
                "review_notes": request.review_notes,
                "reviewed_by": str(request.reviewed_by_user_id),
                "timestamp": now.isoformat(),
            },
        )
        self._schedule(
            request.organization_id,
            [
                _Delivery(
                    request.requested_by_user_id,
                    NotificationPayload(
                        title="Your reopen request was rejected",
                        message=(
                            "Your reopen request was reviewed and rejected. "
                            f"Reason: {request.review_notes}"
                        ),
                        type=NotificationType.REOPEN_REJECTED,
                        priority=NotificationPriority.NORMAL,
                        details={
                            "ticket_id": str(ticket.id),
                            "reopen_request_id": str(request.id),
                        },
                        action_url=ticket_service.ticket_action_url(ticket.id),
                    ),
                )
            ],
            label=f"reopen-rejected:{request.id}",
        )

    # -------------------------------------------------------------------------
    # Side effects
    # -------------------------------------------------------------------------

    def _append_message(
        self,
        db: Session,
        ticket_id: UUID,
        author_id: UUID | None,
        text: str,
        details: dict,
    ) -> None:
        try:
            message_service.append_system_message(db, ticket_id, author_id, text, details)
        except Exception as exc:
            db.rollback()
            logger.error(
                "System message failed for ticket %s: %s",
                ticket_id,
                type(exc).__name__,
                extra=build_log_context(ticket_id=ticket_id),
            )

    async def _broadcast(self, ticket_id: UUID, event: str, data: dict) -> None:
        try:
            await self._connections.broadcast_to_ticket_room(ticket_id, event, data)
        except Exception as exc:
            logger.warning("Broadcast %s failed for ticket %s: %s", event, ticket_id, type(exc).__name__)

    def _schedule(self, org_id: UUID, deliveries: list[_Delivery], label: str) -> None:
        if not deliveries:
            return
        self._background.submit(self._deliver_all(org_id, deliveries), label=label)

    async def _deliver_all(self, org_id: UUID, deliveries: list[_Delivery]) -> int:
        """Send each notification on a fresh session. Returns how many persisted."""
        sent = 0
        with self._session_factory() as db:
            for delivery in deliveries:
                try:
                    await self._dispatcher.send_to_user(db, delivery.user_id, org_id, delivery.payload)
                    sent += 1
                except Exception as exc:
                    db.rollback()
                    logger.error(
                        "Reopen notification failed for user %s: %s",
                        delivery.user_id,
                        type(exc).__name__,
                        extra=build_log_context(user_id=delivery.user_id, org_id=org_id),
                    )
        return sent


def _clean_text(value: str | None, *, field: str, min_length: int) -> str:
    text = (value or "").strip()
    if len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters")
    if len(text) > settings.REOPEN_TEXT_MAX_LENGTH:
        raise ValidationError(
            f"{field} must be at most {settings.REOPEN_TEXT_MAX_LENGTH} characters"
        )
    return text
