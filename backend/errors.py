from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    """Domain failure raised by the service layer.

    Every error carries a stable ``kind`` (the taxonomy bucket), a ``code``
    naming the precise failure, a human message and optional context the
    caller can use to correct its input.
    """

    kind = "Error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, code: str, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class NotFoundError(ServiceError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(ServiceError):
    kind = "ValidationError"
    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    kind = "Conflict"
    status_code = status.HTTP_409_CONFLICT


class ForbiddenError(ServiceError):
    kind = "Forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class DependencyFailure(ServiceError):
    kind = "DependencyFailure"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


def event_not_found(event_ref) -> NotFoundError:
    return NotFoundError("EventNotFound", "Event not found", {"event": str(event_ref)})


def invalid_participant(index: int, field: str, message: str) -> ValidationError:
    return ValidationError("InvalidParticipant", message, {"index": index, "field": field})
