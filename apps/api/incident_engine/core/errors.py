"""Error taxonomy shared by the incident lifecycle services."""

from uuid import UUID


class IncidentEngineError(Exception):
    """Base exception for incident lifecycle errors."""

    pass


class ValidationError(IncidentEngineError):
    """Bad input, expired deadline or a ticket in the wrong status."""

    pass


class NotFoundError(IncidentEngineError):
    """Entity absent, or owned by another tenant."""

    pass


class ConflictError(IncidentEngineError):
    """Duplicate pending request or an already-reviewed request."""

    pass


class ForbiddenError(IncidentEngineError):
    """Caller is not allowed to perform the operation."""

    pass


class TransientDeliveryError(IncidentEngineError):
    """A notification channel failed to deliver.

    Always caught at the dispatch boundary; never surfaced to callers of
    ``NotificationDispatcher.send_to_user``.
    """

    def __init__(self, message: str, *, channel: str, user_id: UUID | None = None):
        super().__init__(message)
        self.channel = channel
        self.user_id = user_id


HTTP_STATUS_BY_ERROR: dict[type[IncidentEngineError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    ForbiddenError: 403,
    TransientDeliveryError: 503,
}


def http_status_for(exc: IncidentEngineError) -> int:
    for error_type in type(exc).__mro__:
        status = HTTP_STATUS_BY_ERROR.get(error_type)
        if status is not None:
            return status
    return 400
