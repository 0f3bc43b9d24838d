from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidInputError
from .state import TicketAction, TicketPriority, TicketStatus


@dataclass(slots=True, frozen=True)
class TicketLocation:
    """Where in the building the issue was reported."""

    area: str
    floor: str | None = None
    zone: str | None = None


@dataclass(slots=True, frozen=True)
class TicketResolution:
    """Outcome recorded when a ticket reaches a terminal state."""

    description: str
    resolved_at: datetime
    resolved_by: str


@dataclass(slots=True, frozen=True)
class Ticket:
    """Committed snapshot of a maintenance ticket."""

    id: str
    reporter_id: str
    description: str
    location: TicketLocation
    priority: TicketPriority
    status: TicketStatus
    created_at: datetime
    updated_at: datetime
    version: int = 1
    assignee_id: str | None = None
    resolution: TicketResolution | None = None
    rejection_reason: str | None = None
    withdrawn_at: datetime | None = None

    @property
    def withdrawn(self) -> bool:
        return self.withdrawn_at is not None


@dataclass(slots=True, frozen=True)
class TicketEvent:
    """Notification emitted after a transition has been committed."""

    id: str
    ticket_id: str
    action: TicketAction
    from_status: TicketStatus | None
    to_status: TicketStatus
    actor_id: str
    timestamp: datetime
    version: int


class TicketLocationInput(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    area: str = Field(..., min_length=1, max_length=255)
    floor: str | None = Field(default=None, max_length=64)
    zone: str | None = Field(default=None, max_length=255)

    def to_location(self) -> TicketLocation:
        return TicketLocation(area=self.area, floor=self.floor or None, zone=self.zone or None)


class TicketDraft(BaseModel):
    """Validated payload for opening a ticket."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=4000)
    location: TicketLocationInput
    priority: TicketPriority = TicketPriority.REGULAR


class TicketPatch(BaseModel):
    """Validated payload for editing a pending ticket."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    description: str | None = Field(default=None, min_length=1, max_length=4000)
    location: TicketLocationInput | None = None
    priority: TicketPriority | None = None

    @model_validator(mode="after")
    def _ensure_payload(self) -> "TicketPatch":
        if self.description is None and self.location is None and self.priority is None:
            raise ValueError("No fields provided for update")
        return self


_SchemaT = TypeVar("_SchemaT", bound=BaseModel)


def parse_payload(schema: type[_SchemaT], payload: _SchemaT | Mapping[str, Any]) -> _SchemaT:
    """Validate ``payload`` against ``schema`` raising :class:`InvalidInputError`."""

    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        errors = [
            {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
            for error in exc.errors()
        ]
        raise InvalidInputError(f"Invalid {schema.__name__} payload", details={"errors": errors}) from exc


def require_text(value: object, field_name: str) -> str:
    """Return the stripped text or raise if nothing is left."""

    if value is not None and not isinstance(value, str):
        raise InvalidInputError(
            f"{field_name} must be a string",
            details={"field": field_name, "type": type(value).__name__},
        )
    cleaned = (value or "").strip()

    if not cleaned:
        raise InvalidInputError(f"{field_name} must not be empty", details={"field": field_name})
    return cleaned
