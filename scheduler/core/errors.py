"""Error taxonomy shared by the scheduling services.

Every error carries a stable ``kind`` and a human-readable message. The HTTP
layer renders them through the handler registered in ``scheduler.main``.
"""

from typing import Any

DATABASE_UNAVAILABLE_MESSAGE = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


class SchedulingError(Exception):
    kind = 'internal'
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {'error': self.kind, 'detail': self.message}
        payload.update(self.details)
        return payload


class ValidationError(SchedulingError):
    kind = 'validation_error'
    status_code = 400


class NotFoundError(SchedulingError):
    kind = 'not_found'
    status_code = 404


class ForbiddenError(SchedulingError):
    kind = 'forbidden'
    status_code = 403


class PreconditionError(SchedulingError):
    kind = 'precondition_failed'
    status_code = 400


class ConflictError(SchedulingError):
    kind = 'conflict'
    status_code = 409

    def __init__(self, message: str, conflicts: list[dict[str, Any]] | None = None, **details: Any) -> None:
        if conflicts is not None:
            details['conflicts'] = conflicts
        super().__init__(message, **details)
        self.conflicts = conflicts or []


class InvalidTransitionError(SchedulingError):
    kind = 'invalid_transition'
    status_code = 409

    def __init__(self, current_status: str, action: str) -> None:
        super().__init__(
            f'Cannot {action} session with status {current_status}',
            current_status=current_status,
            action=action,
        )
        self.current_status = current_status
        self.action = action


class InternalError(SchedulingError):
    kind = 'internal'
    status_code = 503

    def __init__(self, message: str = DATABASE_UNAVAILABLE_MESSAGE, **details: Any) -> None:
        super().__init__(message, **details)
