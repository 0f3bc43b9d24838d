from __future__ import annotations

import asyncio
from collections.abc import Collection
from dataclasses import replace
from typing import Callable, Protocol

from .errors import ConflictError, TicketNotFoundError
from .models import Ticket
from .state import TicketStatus

TicketMutator = Callable[[Ticket], Ticket]


class TicketStore(Protocol):
    """Durable record of tickets guarded by an optimistic version token."""

    async def create(self, ticket: Ticket) -> Ticket:
        ...

    async def get(self, ticket_id: str) -> Ticket:
        ...

    async def commit(self, ticket_id: str, expected_version: int, mutator: TicketMutator) -> Ticket:
        ...

    async def list_tickets(
        self,
        *,
        reporter_id: str | None = None,
        statuses: Collection[TicketStatus] | None = None,
    ) -> list[Ticket]:
        ...


class InMemoryTicketStore:
    """Process-local store keeping one lock per ticket.

    Snapshots are frozen dataclasses, so readers always see a fully committed
    ticket and never a half-applied mutation.
    """

    def __init__(self) -> None:
        self._tickets: dict[str, Ticket] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, ticket_id: str) -> asyncio.Lock:
        lock = self._locks.get(ticket_id)
        if lock is None:
            lock = self._locks.setdefault(ticket_id, asyncio.Lock())
        return lock

    async def create(self, ticket: Ticket) -> Ticket:
        async with self._lock_for(ticket.id):
            if ticket.id in self._tickets:
                raise ConflictError(f"Ticket {ticket.id} already exists")
            stored = replace(ticket, version=1)
            self._tickets[ticket.id] = stored
            return stored

    async def get(self, ticket_id: str) -> Ticket:
        ticket = self._tickets.get(ticket_id)
        if ticket is None or ticket.withdrawn:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def commit(self, ticket_id: str, expected_version: int, mutator: TicketMutator) -> Ticket:
        async with self._lock_for(ticket_id):
            current = self._tickets.get(ticket_id)
            if current is None or current.withdrawn:
                raise TicketNotFoundError(f"Ticket {ticket_id} not found")
            if current.version != expected_version:
                raise ConflictError(
                    f"Ticket {ticket_id} changed since version {expected_version}",
                    details={"expected_version": expected_version, "current_version": current.version},
                )
            updated = replace(mutator(current), id=current.id, version=current.version + 1)
            self._tickets[ticket_id] = updated
            return updated

    async def list_tickets(
        self,
        *,
        reporter_id: str | None = None,
        statuses: Collection[TicketStatus] | None = None,
    ) -> list[Ticket]:
        tickets = [
            ticket
            for ticket in self._tickets.values()
            if not ticket.withdrawn
            and (reporter_id is None or ticket.reporter_id == reporter_id)
            and (statuses is None or ticket.status in statuses)
        ]
        tickets.sort(key=lambda ticket: ticket.created_at, reverse=True)
        return tickets
