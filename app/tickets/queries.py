from __future__ import annotations

from .errors import ForbiddenError, InvalidInputError
from .models import Ticket
from .state import OPEN_STATUSES, TERMINAL_STATUSES, TicketStatus
from .store import TicketStore


def _check_filter(status: TicketStatus | None, allowed: frozenset[TicketStatus], view: str) -> None:
    if status is not None and status not in allowed:
        allowed_values = sorted(item.value for item in allowed)
        raise InvalidInputError(
            f"Status {status.value} is not available in the {view} view",
            details={"allowed": allowed_values},
        )


class TicketQueryService:
    """Read-only projections over committed ticket snapshots."""

    def __init__(self, store: TicketStore) -> None:
        self._store = store

    async def get(self, ticket_id: str, *, viewer_id: str, can_view_all: bool = False) -> Ticket:
        ticket = await self._store.get(ticket_id)
        if not can_view_all and ticket.reporter_id != viewer_id:
            raise ForbiddenError(f"Ticket {ticket_id} was not reported by {viewer_id}")
        return ticket

    async def reported_by(self, reporter_id: str, *, status: TicketStatus | None = None) -> list[Ticket]:
        statuses = None if status is None else {status}
        return await self._store.list_tickets(reporter_id=reporter_id, statuses=statuses)

    async def assigned_to(self, handler_id: str, *, status: TicketStatus | None = None) -> list[Ticket]:
        """Tickets the handler owns plus unclaimed ones, terminal states excluded."""

        _check_filter(status, OPEN_STATUSES, "assigned")
        statuses = OPEN_STATUSES if status is None else {status}
        tickets = await self._store.list_tickets(statuses=statuses)
        return [
            ticket
            for ticket in tickets
            if ticket.status == TicketStatus.PENDING or ticket.assignee_id == handler_id
        ]

    async def closed(self, *, status: TicketStatus | None = None) -> list[Ticket]:
        _check_filter(status, TERMINAL_STATUSES, "closed")
        statuses = TERMINAL_STATUSES if status is None else {status}
        return await self._store.list_tickets(statuses=statuses)
