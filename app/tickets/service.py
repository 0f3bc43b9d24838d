from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from opentelemetry import trace

from .errors import ConflictError
from .models import Ticket, TicketDraft, TicketPatch
from .notifications import TicketEventDispatcher
from .state import TicketAction
from .store import TicketStore
from .workflow import TicketTransition, apply_action, open_ticket

logger = logging.getLogger(__name__)
_tracer = trace.get_tracer(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketWorkflowService:
    """Run workflow operations against the store and publish their events.

    Each operation reads the latest snapshot, validates it with the pure
    workflow engine and commits it with the snapshot's version. A commit that
    loses a race is retried with a fresh read, up to ``max_attempts`` times.
    """

    def __init__(
        self,
        store: TicketStore,
        *,
        dispatcher: TicketEventDispatcher | None = None,
        max_attempts: int = 3,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._store = store
        self._dispatcher = dispatcher or TicketEventDispatcher()
        self._max_attempts = max_attempts
        self._clock = clock or _utcnow

    @property
    def store(self) -> TicketStore:
        return self._store

    @property
    def dispatcher(self) -> TicketEventDispatcher:
        return self._dispatcher

    async def create_ticket(self, reporter_id: str, draft: TicketDraft | Mapping[str, Any]) -> Ticket:
        with _tracer.start_as_current_span("ticket.create") as span:
            transition = open_ticket(reporter_id, draft, now=self._clock())
            span.set_attribute("ticket.id", transition.ticket.id)
            ticket = await self._store.create(transition.ticket)
            logger.info("Ticket %s opened by %s", ticket.id, reporter_id)
            self._dispatcher.emit(transition.event)
            return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        return await self._store.get(ticket_id)

    async def assume(self, ticket_id: str, handler_id: str, *, expected_version: int | None = None) -> Ticket:
        return await self._run(ticket_id, TicketAction.ASSUME, handler_id, None, expected_version)

    async def renounce(self, ticket_id: str, handler_id: str, *, expected_version: int | None = None) -> Ticket:
        return await self._run(ticket_id, TicketAction.RENOUNCE, handler_id, None, expected_version)

    async def reject(
        self, ticket_id: str, handler_id: str, reason: str, *, expected_version: int | None = None
    ) -> Ticket:
        return await self._run(ticket_id, TicketAction.REJECT, handler_id, reason, expected_version)

    async def resolve(
        self, ticket_id: str, handler_id: str, description: str, *, expected_version: int | None = None
    ) -> Ticket:
        return await self._run(ticket_id, TicketAction.RESOLVE, handler_id, description, expected_version)

    async def edit(
        self,
        ticket_id: str,
        reporter_id: str,
        patch: TicketPatch | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Ticket:
        return await self._run(ticket_id, TicketAction.EDIT, reporter_id, patch, expected_version)

    async def withdraw(self, ticket_id: str, reporter_id: str, *, expected_version: int | None = None) -> Ticket:
        return await self._run(ticket_id, TicketAction.WITHDRAW, reporter_id, None, expected_version)

    async def _run(
        self,
        ticket_id: str,
        action: TicketAction,
        actor_id: str,
        payload: Any,
        expected_version: int | None,
    ) -> Ticket:
        with _tracer.start_as_current_span(f"ticket.{action.value}") as span:
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.actor", actor_id)
            attempt = 0
            while True:
                attempt += 1
                current = await self._store.get(ticket_id)
                if expected_version is not None and current.version != expected_version:
                    raise ConflictError(
                        f"Ticket {ticket_id} changed since version {expected_version}",
                        details={"expected_version": expected_version, "current_version": current.version},
                    )
                transition = apply_action(current, action, actor_id, payload, now=self._clock())
                try:
                    committed = await self._store.commit(
                        ticket_id, current.version, _replace_with(transition)
                    )
                except ConflictError:
                    if expected_version is not None or attempt >= self._max_attempts:
                        logger.info(
                            "Giving up %s on ticket %s after %d attempt(s)", action.value, ticket_id, attempt
                        )
                        raise
                    logger.debug("Retrying %s on ticket %s after version conflict", action.value, ticket_id)
                    continue

                span.set_attribute("ticket.version", committed.version)
                span.set_attribute("ticket.attempts", attempt)
                logger.info(
                    "Ticket %s %s by %s: %s -> %s",
                    ticket_id,
                    action.value,
                    actor_id,
                    current.status.value,
                    committed.status.value,
                )
                self._dispatcher.emit(transition.event)
                return committed


def _replace_with(transition: TicketTransition) -> Callable[[Ticket], Ticket]:
    # Only invoked once the stored version matches the one the transition was built from.
    def mutator(_: Ticket) -> Ticket:
        return transition.ticket

    return mutator
