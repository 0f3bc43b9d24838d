"""Pure ticket workflow engine.

Every function here maps a committed snapshot plus an operation to the next
snapshot and the event describing it. Nothing is persisted or published;
the store wraps :func:`apply_action` in its compare-and-swap and the service
publishes the event once the commit succeeded.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Mapping

from .errors import ForbiddenError, IllegalTransitionError, InvalidInputError, TicketNotFoundError
from .models import (
    Ticket,
    TicketDraft,
    TicketEvent,
    TicketPatch,
    TicketResolution,
    parse_payload,
    require_text,
)
from .state import TicketAction, TicketStateMachine


@dataclass(slots=True, frozen=True)
class TicketTransition:
    """Result of applying one operation to a snapshot."""

    ticket: Ticket
    event: TicketEvent


def _make_event(
    ticket: Ticket,
    *,
    action: TicketAction,
    previous: Ticket | None,
    actor_id: str,
    now: datetime,
) -> TicketEvent:
    return TicketEvent(
        id=str(uuid.uuid4()),
        ticket_id=ticket.id,
        action=action,
        from_status=previous.status if previous is not None else None,
        to_status=ticket.status,
        actor_id=actor_id,
        timestamp=now,
        version=ticket.version,
    )


def open_ticket(
    reporter_id: str,
    draft: TicketDraft | Mapping[str, Any],
    *,
    now: datetime,
    ticket_id: str | None = None,
) -> TicketTransition:
    """Build the first snapshot of a ticket from a reporter's draft."""

    reporter_id = require_text(reporter_id, "reporter_id")
    validated = parse_payload(TicketDraft, draft)
    ticket = Ticket(
        id=ticket_id or str(uuid.uuid4()),
        reporter_id=reporter_id,
        description=validated.description,
        location=validated.location.to_location(),
        priority=validated.priority,
        status=TicketStateMachine.initial_state(),
        created_at=now,
        updated_at=now,
        version=1,
    )
    event = _make_event(ticket, action=TicketAction.CREATE, previous=None, actor_id=reporter_id, now=now)
    return TicketTransition(ticket=ticket, event=event)


def _require_assignee(current: Ticket, actor_id: str) -> None:
    if current.assignee_id != actor_id:
        raise ForbiddenError(
            f"Ticket {current.id} is not assigned to {actor_id}",
            details={"assignee_id": current.assignee_id},
        )


def _require_reporter(current: Ticket, actor_id: str) -> None:
    if current.reporter_id != actor_id:
        raise ForbiddenError(f"Ticket {current.id} was not reported by {actor_id}")


def _assume(current: Ticket, actor_id: str, payload: Any, now: datetime) -> Ticket:
    return replace(current, assignee_id=actor_id)


def _renounce(current: Ticket, actor_id: str, payload: Any, now: datetime) -> Ticket:
    _require_assignee(current, actor_id)
    return replace(current, assignee_id=None, resolution=None, rejection_reason=None)


def _reject(current: Ticket, actor_id: str, payload: Any, now: datetime) -> Ticket:
    _require_assignee(current, actor_id)
    reason = require_text(payload, "reason")
    return replace(
        current,
        assignee_id=None,
        rejection_reason=reason,
        resolution=TicketResolution(description=reason, resolved_at=now, resolved_by=actor_id),
    )


def _resolve(current: Ticket, actor_id: str, payload: Any, now: datetime) -> Ticket:
    _require_assignee(current, actor_id)
    description = require_text(payload, "description")
    return replace(
        current,
        assignee_id=None,
        resolution=TicketResolution(description=description, resolved_at=now, resolved_by=actor_id),
    )


def _edit(current: Ticket, actor_id: str, payload: Any, now: datetime) -> Ticket:
    _require_reporter(current, actor_id)
    if payload is None:
        raise InvalidInputError("No fields provided for update")
    patch = parse_payload(TicketPatch, payload)
    return replace(
        current,
        description=patch.description if patch.description is not None else current.description,
        location=patch.location.to_location() if patch.location is not None else current.location,
        priority=patch.priority if patch.priority is not None else current.priority,
    )


def _withdraw(current: Ticket, actor_id: str, payload: Any, now: datetime) -> Ticket:
    _require_reporter(current, actor_id)
    return replace(current, withdrawn_at=now)


_Handler = Callable[[Ticket, str, Any, datetime], Ticket]

_HANDLERS: Mapping[TicketAction, _Handler] = {
    TicketAction.ASSUME: _assume,
    TicketAction.RENOUNCE: _renounce,
    TicketAction.REJECT: _reject,
    TicketAction.RESOLVE: _resolve,
    TicketAction.EDIT: _edit,
    TicketAction.WITHDRAW: _withdraw,
}


def apply_action(
    current: Ticket,
    action: TicketAction,
    actor_id: str,
    payload: Any = None,
    *,
    now: datetime,
) -> TicketTransition:
    """Validate ``action`` against ``current`` and return the next snapshot.

    Checks run in a fixed order: the ticket must still exist, its status must
    allow the action, the actor must own the ticket in the required role and
    finally the payload must be valid.

    Raises:
        TicketNotFoundError: the ticket was withdrawn.
        IllegalTransitionError: the status does not allow ``action``.
        ForbiddenError: the actor is not the assignee or reporter.
        InvalidInputError: the payload or actor id is invalid.
    """

    handler = _HANDLERS.get(action)
    if handler is None:
        raise InvalidInputError(f"Unsupported ticket action {action!s}")
    actor_id = require_text(actor_id, "actor_id")
    if current.withdrawn:
        raise TicketNotFoundError(f"Ticket {current.id} not found")

    if not TicketStateMachine.allows(current.status, action):
        raise IllegalTransitionError(
            f"Cannot {action.value} ticket {current.id} in status {current.status.value}",
            details={
                "status": current.status.value,
                "action": action.value,
                "terminal": TicketStateMachine.is_terminal(current.status),
            },
        )
    _, resulting = TicketStateMachine.edge_for(action)

    updated = handler(current, actor_id, payload, now)
    updated = replace(updated, status=resulting, updated_at=now, version=current.version + 1)
    event = _make_event(updated, action=action, previous=current, actor_id=actor_id, now=now)
    return TicketTransition(ticket=updated, event=event)
