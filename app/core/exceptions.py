# app/core/exceptions.py
# Classified failures raised by the lifecycle services.
#
# Services never raise HTTPException. Each error carries a kind from the
# fixed taxonomy below; app/main.py turns them into JSON responses:
#   {"detail": "<message>", "error_kind": "<kind>"}

from typing import Any, Dict, Optional


class ErrorKind:
    NOT_FOUND = "NotFound"
    UNAUTHORIZED = "Unauthorized"
    FORBIDDEN = "Forbidden"
    INVALID_STATE = "InvalidState"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    VALIDATION_FAILURE = "ValidationFailure"


class LifecycleError(Exception):
    """Base class for every classified failure."""

    kind: str = ErrorKind.INVALID_STATE
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"detail": self.message, "error_kind": self.kind}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(LifecycleError):
    """Referenced entity does not exist (404)."""
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class UnauthorizedError(LifecycleError):
    """No authenticated actor where one is required (401)."""
    kind = ErrorKind.UNAUTHORIZED
    status_code = 401

    def __init__(self, message: str = "Authentication required.", details=None):
        super().__init__(message, details)


class ForbiddenError(LifecycleError):
    """Actor is not the owner, counterparty or required role (403)."""
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class InvalidStateError(LifecycleError):
    """Entity is not in the state the action requires (409)."""
    kind = ErrorKind.INVALID_STATE
    status_code = 409


class DeadlineExceededError(LifecycleError):
    """A hard temporal cutoff has passed (410)."""
    kind = ErrorKind.DEADLINE_EXCEEDED
    status_code = 410


class ValidationFailureError(LifecycleError):
    """Malformed or incomplete input, caught before any write (422)."""
    kind = ErrorKind.VALIDATION_FAILURE
    status_code = 422
