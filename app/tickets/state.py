from __future__ import annotations

from enum import Enum
from typing import Mapping


class TicketStatus(str, Enum):
    """Supported states for a ticket's lifecycle."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    REJECTED = "REJECTED"


class TicketPriority(str, Enum):
    """Informational urgency set by the reporter."""

    LOW = "LOW"
    REGULAR = "REGULAR"
    IMPORTANT = "IMPORTANT"
    URGENT = "URGENT"


class TicketAction(str, Enum):
    """Operations the workflow engine accepts."""

    CREATE = "create"
    ASSUME = "assume"
    RENOUNCE = "renounce"
    REJECT = "reject"
    RESOLVE = "resolve"
    EDIT = "edit"
    WITHDRAW = "withdraw"


TERMINAL_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.DONE, TicketStatus.REJECTED})
OPEN_STATUSES: frozenset[TicketStatus] = frozenset({TicketStatus.PENDING, TicketStatus.IN_PROGRESS})


class TicketStateMachine:
    """Validate ticket lifecycle transitions."""

    _TRANSITIONS: Mapping[TicketStatus, frozenset[TicketStatus]] = {
        TicketStatus.PENDING: frozenset({TicketStatus.IN_PROGRESS}),
        TicketStatus.IN_PROGRESS: frozenset(
            {TicketStatus.PENDING, TicketStatus.DONE, TicketStatus.REJECTED}
        ),
        TicketStatus.DONE: frozenset(),
        TicketStatus.REJECTED: frozenset(),
    }

    # Status each action requires and the status it leaves behind.
    _ACTION_EDGES: Mapping[TicketAction, tuple[TicketStatus, TicketStatus]] = {
        TicketAction.ASSUME: (TicketStatus.PENDING, TicketStatus.IN_PROGRESS),
        TicketAction.RENOUNCE: (TicketStatus.IN_PROGRESS, TicketStatus.PENDING),
        TicketAction.REJECT: (TicketStatus.IN_PROGRESS, TicketStatus.REJECTED),
        TicketAction.RESOLVE: (TicketStatus.IN_PROGRESS, TicketStatus.DONE),
        TicketAction.EDIT: (TicketStatus.PENDING, TicketStatus.PENDING),
        TicketAction.WITHDRAW: (TicketStatus.PENDING, TicketStatus.PENDING),
    }

    @classmethod
    def initial_state(cls) -> TicketStatus:
        return TicketStatus.PENDING

    @classmethod
    def is_terminal(cls, status: TicketStatus) -> bool:
        return status in TERMINAL_STATUSES

    @classmethod
    def can_transition(cls, current: TicketStatus, new: TicketStatus) -> bool:
        return new in cls._TRANSITIONS.get(current, frozenset())

    @classmethod
    def edge_for(cls, action: TicketAction) -> tuple[TicketStatus, TicketStatus]:
        """Return the ``(required, resulting)`` status pair for an action."""

        try:
            return cls._ACTION_EDGES[action]
        except KeyError:
            raise ValueError(f"Action {action.value!r} has no lifecycle edge") from None

    @classmethod
    def allows(cls, current: TicketStatus, action: TicketAction) -> bool:
        """Whether ``action`` may run on a ticket in ``current`` status.

        The action must start from ``current`` and its edge must be a
        lifecycle transition, or a self-loop on a non-terminal status.
        """

        required, resulting = cls.edge_for(action)
        if current != required or cls.is_terminal(current):
            return False
        return required == resulting or cls.can_transition(required, resulting)
