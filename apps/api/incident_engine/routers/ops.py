"""
Ops Router - alert scan and workload endpoints.

Manual hooks for operators: force a scan, re-evaluate one ticket, inspect
workloads and the scheduler.
"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from incident_engine.core.deps import get_db, get_runtime, require_permission
from incident_engine.core.permissions import RUN_ALERT_SCAN
from incident_engine.schemas.auth import UserSession
from incident_engine.services import assignment_service

router = APIRouter(prefix="/ops", tags=["ops"])


@router.post("/alerts/scan")
async def run_alert_scan(
    session: UserSession = Depends(require_permission(RUN_ALERT_SCAN)),
    runtime=Depends(get_runtime),
):
    """Run one scan now, unless the scheduled one is still in flight."""
    ran = await runtime.alert_scan.run_once()
    if not ran:
        return {"skipped": True, "reason": "scan already in progress"}
    result = runtime.alert_scan.last_result
    return {"skipped": False, "result": result.as_dict() if result is not None else None}


@router.post("/alerts/tickets/{ticket_id}/evaluate")
async def evaluate_ticket(
    ticket_id: UUID,
    session: UserSession = Depends(require_permission(RUN_ALERT_SCAN)),
    runtime=Depends(get_runtime),
):
    """Forced re-evaluation of one ticket. Idempotent."""
    change = await runtime.alert_monitor.evaluate_ticket(ticket_id, org_id=session.org_id)
    return {"changed": change is not None, "change": change.as_dict() if change else None}


@router.get("/workload")
def get_workload(
    session: UserSession = Depends(require_permission(RUN_ALERT_SCAN)),
    db: Session = Depends(get_db),
):
    workloads = assignment_service.get_employee_workloads(db, session.org_id)
    return {
        "items": [
            {"user_id": str(w.user_id), "display_name": w.display_name, "open_tickets": w.open_tickets}
            for w in workloads
        ],
        "least_loaded_user_id": (
            str(min(workloads, key=lambda w: w.open_tickets).user_id) if workloads else None
        ),
    }


@router.get("/scheduler")
def get_scheduler_stats(
    session: UserSession = Depends(require_permission(RUN_ALERT_SCAN)),
    runtime=Depends(get_runtime),
):
    return {
        "alert_scan": runtime.alert_scan.stats(),
        "background": runtime.background.stats(),
        "connections": runtime.connections.total_connections,
    }
