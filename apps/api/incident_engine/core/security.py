"""Session token minting and validation."""

import logging
from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from incident_engine.core.config import settings

logger = logging.getLogger(__name__)


def create_session_token(user_id: UUID, org_id: UUID) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    """
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "org_id": str(org_id),
        "iat": now,
        "exp": now + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify session JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error: jwt.InvalidTokenError | None = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore[misc]


def resolve_user_id(token: str | None) -> UUID | None:
    """Validate a bearer credential and return the user id it names, or None."""
    if not token:
        return None
    try:
        payload = decode_session_token(token)
        return UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        logger.info("Rejected bearer credential: %s", type(exc).__name__)
        return None
