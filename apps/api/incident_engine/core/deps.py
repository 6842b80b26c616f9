"""FastAPI dependencies for authentication, authorization, and database access."""

from typing import Generator

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from incident_engine.core.security import resolve_user_id
from incident_engine.db.session import SessionLocal
from incident_engine.schemas.auth import UserSession

# Cookie name for browser clients
COOKIE_NAME = "helpdesk_session"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_runtime(request: Request):
    """Return the process runtime built at startup."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return runtime


def extract_token(request: Request) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get("Authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value:
        return value.strip()
    return request.cookies.get(COOKIE_NAME)


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
) -> UserSession:
    """
    Get session context: user_id, org_id, role.

    Raises:
        HTTPException 401: Not authenticated
        HTTPException 403: No active membership
    """
    # Import here to avoid circular imports
    from incident_engine.db.models import Membership, User

    user_id = resolve_user_id(extract_token(request))
    if user_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")

    membership = db.query(Membership).filter(
        Membership.user_id == user.id,
        Membership.is_active.is_(True),
    ).first()
    if not membership:
        raise HTTPException(status_code=403, detail="No organization membership")

    return UserSession(
        user_id=user.id,
        org_id=membership.organization_id,
        role_id=membership.role_id,
        email=user.email,
        display_name=user.display_name,
    )


def require_permission(permission: str):
    """
    Dependency factory for permission-based authorization.

    Usage:
        @router.post("/scan", dependencies=[Depends(require_permission(RUN_ALERT_SCAN))])
    """
    def dependency(
        session: UserSession = Depends(get_current_session),
        db: Session = Depends(get_db),
    ) -> UserSession:
        from incident_engine.services import permission_service

        if not permission_service.user_has_permission(db, session.user_id, session.org_id, permission):
            raise HTTPException(status_code=403, detail=f"Missing permission '{permission}'")
        return session
    return dependency
