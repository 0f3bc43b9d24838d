"""Error taxonomy for ticket workflow operations."""

from __future__ import annotations

from typing import Any


class TicketWorkflowError(RuntimeError):
    """Base error for ticket workflow issues."""

    error_code: str = "TICKET_ERROR"
    http_status: int = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"detail": self.message, "code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload


class InvalidInputError(TicketWorkflowError):
    """Raised when a payload is malformed or misses required fields."""

    error_code = "INVALID_INPUT"
    http_status = 400


class ForbiddenError(TicketWorkflowError):
    """Raised when the caller does not own the ticket in the required role."""

    error_code = "FORBIDDEN"
    http_status = 403


class TicketNotFoundError(TicketWorkflowError):
    """Raised when a ticket could not be located."""

    error_code = "NOT_FOUND"
    http_status = 404


class IllegalTransitionError(TicketWorkflowError):
    """Raised when an operation is not valid for the ticket's current status."""

    error_code = "ILLEGAL_TRANSITION"
    http_status = 409


class ConflictError(TicketWorkflowError):
    """Raised when a write was based on a stale ticket version."""

    error_code = "VERSION_CONFLICT"
    http_status = 409


class UnavailableError(TicketWorkflowError):
    """Raised when the ticket store cannot be reached."""

    error_code = "UNAVAILABLE"
    http_status = 503
