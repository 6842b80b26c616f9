"""Permission registry for the incident lifecycle.

Permissions are granted per role through ``RolePermission`` rows.
Missing rows mean the permission is not granted.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class PermissionDef:
    """Permission definition with metadata."""
    key: str
    label: str
    description: str
    category: str


class PermissionCategory(str, Enum):
    """Permission categories for UI grouping."""
    TICKETS = "Tickets"
    OPERATIONS = "Operations"


# Keys used by services
VIEW_TICKETS = "view_tickets"
ASSIGN_TICKETS = "assign_tickets"
REOPEN_TICKETS = "reopen_tickets"
RUN_ALERT_SCAN = "run_alert_scan"


# =============================================================================
# Permission Registry
# =============================================================================

PERMISSION_REGISTRY: dict[str, PermissionDef] = {
    VIEW_TICKETS: PermissionDef(
        VIEW_TICKETS, "View Tickets",
        "See every ticket of the organization", PermissionCategory.TICKETS
    ),
    ASSIGN_TICKETS: PermissionDef(
        ASSIGN_TICKETS, "Assign Tickets",
        "Assign or reassign tickets to employees", PermissionCategory.TICKETS
    ),
    REOPEN_TICKETS: PermissionDef(
        REOPEN_TICKETS, "Review Reopen Requests",
        "Approve or reject client reopen requests", PermissionCategory.TICKETS
    ),
    RUN_ALERT_SCAN: PermissionDef(
        RUN_ALERT_SCAN, "Run Alert Scan",
        "Trigger alert re-evaluation and inspect workloads", PermissionCategory.OPERATIONS
    ),
}


def get_permission(key: str) -> PermissionDef | None:
    """Get permission definition by key."""
    return PERMISSION_REGISTRY.get(key)


def is_valid_permission(key: str) -> bool:
    """Check if permission key exists."""
    return key in PERMISSION_REGISTRY
