"""Typed rejection reasons raised by the staffing core.

Every failure that reaches a caller carries a stable code and a user-safe message.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_PAYMENT = "INVALID_PAYMENT"
    NON_POSITIVE_PAYMENT = "NON_POSITIVE_PAYMENT"
    STAFF_ALREADY_ASSIGNED = "STAFF_ALREADY_ASSIGNED"
    STAFF_UNAVAILABLE = "STAFF_UNAVAILABLE"
    EVENT_CLOSED = "EVENT_CLOSED"
    ROLE_AT_CAPACITY = "ROLE_AT_CAPACITY"
    EVENT_NOT_FOUND = "EVENT_NOT_FOUND"
    ROLE_NOT_FOUND = "ROLE_NOT_FOUND"
    STAFF_NOT_FOUND = "STAFF_NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    ASSIGNMENT_NOT_FOUND = "ASSIGNMENT_NOT_FOUND"
    SHIFT_NOT_FOUND = "SHIFT_NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"


class StaffingError(Exception):
    """Base error with code, user-safe message and structured details."""

    default_code = ErrorCode.INVALID_INPUT

    def __init__(
        self,
        message: str,
        *,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.details = dict(details or {})

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(StaffingError, ValueError):
    """Malformed or missing input. Never retried."""

    default_code = ErrorCode.INVALID_INPUT


class CapacityExceededError(StaffingError):
    """The role is already full; refresh state before retrying."""

    default_code = ErrorCode.ROLE_AT_CAPACITY

    def __init__(self, event_id: int, role_name: str, *, count: Optional[int] = None) -> None:
        details: Dict[str, Any] = {"event_id": event_id, "role": role_name}
        if count is not None:
            details["count"] = count
        super().__init__(f"Role '{role_name}' is already fully staffed", details=details)
        self.event_id = event_id
        self.role_name = role_name


class NotFoundError(StaffingError, LookupError):
    """Unknown staff, role, event, booking, assignment or shift reference."""

    default_code = ErrorCode.EVENT_NOT_FOUND

    def __init__(self, kind: str, identifier: Any, *, code: Optional[ErrorCode] = None) -> None:
        resolved = code or _NOT_FOUND_CODES.get(kind, self.default_code)
        super().__init__(
            f"{kind.capitalize()} not found",
            code=resolved,
            details={"kind": kind, "id": identifier},
        )
        self.kind = kind
        self.identifier = identifier


class InvalidTransitionError(StaffingError):
    """A lifecycle transition that is not allowed from the current state."""

    default_code = ErrorCode.INVALID_TRANSITION

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{target}'",
            details={"entity": entity, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class CollaboratorUnavailableError(StaffingError):
    """The matching or notification service could not be reached in time."""

    default_code = ErrorCode.COLLABORATOR_UNAVAILABLE

    def __init__(self, collaborator: str, reason: str = "") -> None:
        super().__init__(
            f"{collaborator} is unavailable" + (f": {reason}" if reason else ""),
            details={"collaborator": collaborator},
        )
        self.collaborator = collaborator


_NOT_FOUND_CODES = {
    "event": ErrorCode.EVENT_NOT_FOUND,
    "role": ErrorCode.ROLE_NOT_FOUND,
    "staff": ErrorCode.STAFF_NOT_FOUND,
    "booking": ErrorCode.BOOKING_NOT_FOUND,
    "assignment": ErrorCode.ASSIGNMENT_NOT_FOUND,
    "shift": ErrorCode.SHIFT_NOT_FOUND,
}
