"""
Reopen Requests Router.

Clients ask to reopen their finished tickets; holders of the
``reopen_tickets`` permission review the requests.
"""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from incident_engine.core.deps import get_current_session, get_db, get_runtime, require_permission
from incident_engine.core.permissions import REOPEN_TICKETS
from incident_engine.db.enums import ReviewDecision
from incident_engine.schemas.auth import UserSession
from incident_engine.services import permission_service, reopen_request_service
from incident_engine.utils.pagination import PaginationParams, get_pagination

router = APIRouter(tags=["reopen-requests"])


# =============================================================================
# Schemas
# =============================================================================


class ReopenRequestCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class ReopenRequestReview(BaseModel):
    decision: ReviewDecision
    notes: str | None = Field(default=None, max_length=500)


class ReopenRequestRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_id: UUID
    organization_id: UUID
    requested_by_user_id: UUID
    reason: str
    status: str
    reviewed_by_user_id: UUID | None = None
    review_notes: str | None = None
    reviewed_at: datetime | None = None
    created_at: datetime


class ReopenRequestListResponse(BaseModel):
    items: list[ReopenRequestRead]
    total: int
    page: int
    per_page: int
    pages: int


class ReviewResponse(BaseModel):
    request: ReopenRequestRead
    ticket_id: UUID
    ticket_status: str
    alert_level: str


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/tickets/{ticket_id}/reopen-requests", response_model=ReopenRequestRead, status_code=201)
async def create_reopen_request(
    ticket_id: UUID,
    data: ReopenRequestCreate,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Ask to reopen a resolved, closed or cancelled ticket (creator only)."""
    request = await runtime.reopen_workflow.create(
        db, ticket_id, session.org_id, session.user_id, data.reason
    )
    return ReopenRequestRead.model_validate(request)


@router.get("/tickets/{ticket_id}/reopen-requests", response_model=list[ReopenRequestRead])
def list_ticket_reopen_requests(
    ticket_id: UUID,
    session: UserSession = Depends(require_permission(REOPEN_TICKETS)),
    db: Session = Depends(get_db),
):
    requests = reopen_request_service.get_requests_for_ticket(db, ticket_id, session.org_id)
    return [ReopenRequestRead.model_validate(r) for r in requests]


@router.get("/reopen-requests/pending", response_model=ReopenRequestListResponse)
def list_pending_reopen_requests(
    pagination: PaginationParams = Depends(get_pagination),
    session: UserSession = Depends(require_permission(REOPEN_TICKETS)),
    db: Session = Depends(get_db),
):
    """Pending requests of the caller's organization, newest first."""
    items, total = reopen_request_service.get_pending_requests(db, session.org_id, pagination)
    return ReopenRequestListResponse(
        items=[ReopenRequestRead.model_validate(r) for r in items],
        total=total,
        page=pagination.page,
        per_page=pagination.per_page,
        pages=pagination.pages_for(total),
    )


@router.get("/reopen-requests/{request_id}", response_model=ReopenRequestRead)
def get_reopen_request(
    request_id: UUID,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
):
    """Requesters see their own requests; reviewers see all of the organization."""
    request = reopen_request_service.get_request(db, request_id, session.org_id)
    if request.requested_by_user_id != session.user_id and not permission_service.user_has_permission(
        db, session.user_id, session.org_id, REOPEN_TICKETS
    ):
        raise HTTPException(status_code=404, detail="Reopen request not found")
    return ReopenRequestRead.model_validate(request)


@router.post("/reopen-requests/{request_id}/review", response_model=ReviewResponse)
async def review_reopen_request(
    request_id: UUID,
    data: ReopenRequestReview,
    session: UserSession = Depends(get_current_session),
    db: Session = Depends(get_db),
    runtime=Depends(get_runtime),
):
    """Approve or reject a pending request. Rejections need notes."""
    result = await runtime.reopen_workflow.review(
        db, request_id, session.org_id, session.user_id, data.decision, data.notes
    )
    return ReviewResponse(
        request=ReopenRequestRead.model_validate(result.request),
        ticket_id=result.ticket.id,
        ticket_status=result.ticket.status,
        alert_level=result.ticket.alert_level,
    )
