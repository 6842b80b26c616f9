"""
Permission Service - role-based permission lookups scoped to an organization.

A user holds a permission when their active membership in the organization
points at an active role with a granted RolePermission row.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from incident_engine.core.permissions import is_valid_permission
from incident_engine.db.models import Membership, Role, RolePermission, User


def _holders_query(db: Session, org_id: UUID, permission: str):
    return (
        db.query(User)
        .join(Membership, Membership.user_id == User.id)
        .join(Role, Role.id == Membership.role_id)
        .join(RolePermission, RolePermission.role_id == Role.id)
        .filter(
            Membership.organization_id == org_id,
            Membership.is_active.is_(True),
            User.is_active.is_(True),
            Role.is_active.is_(True),
            RolePermission.permission == permission,
            RolePermission.is_granted.is_(True),
        )
    )


def user_has_permission(db: Session, user_id: UUID, org_id: UUID, permission: str) -> bool:
    """Does the user hold the permission in the organization."""
    if not is_valid_permission(permission):
        return False
    return (
        _holders_query(db, org_id, permission).filter(User.id == user_id).first()
        is not None
    )


def list_users_with_permission(db: Session, org_id: UUID, permission: str) -> list[User]:
    """Active users holding the permission, in a stable order."""
    if not is_valid_permission(permission):
        return []
    return (
        _holders_query(db, org_id, permission)
        .order_by(User.created_at, User.id)
        .distinct()
        .all()
    )


def list_ticket_receivers(db: Session, org_id: UUID) -> list[User]:
    """Active users whose active role may receive ticket assignments."""
    return (
        db.query(User)
        .join(Membership, Membership.user_id == User.id)
        .join(Role, Role.id == Membership.role_id)
        .filter(
            Membership.organization_id == org_id,
            Membership.is_active.is_(True),
            User.is_active.is_(True),
            Role.is_active.is_(True),
            Role.can_receive_tickets.is_(True),
        )
        .order_by(User.created_at, User.id)
        .all()
    )


def get_user_org_id(db: Session, user_id: UUID) -> UUID | None:
    membership = db.query(Membership).filter(Membership.user_id == user_id).first()
    return membership.organization_id if membership else None
