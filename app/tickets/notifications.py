"""Fan-out of committed ticket events to downstream consumers."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Iterable, Protocol

import httpx

from .models import TicketEvent

logger = logging.getLogger(__name__)


class TicketEventSink(Protocol):
    async def publish(self, event: TicketEvent) -> None:
        ...


def event_to_payload(event: TicketEvent) -> dict[str, Any]:
    return {
        "id": event.id,
        "ticket_id": event.ticket_id,
        "action": event.action.value,
        "from_status": event.from_status.value if event.from_status else None,
        "to_status": event.to_status.value,
        "actor_id": event.actor_id,
        "timestamp": event.timestamp.isoformat(),
        "version": event.version,
    }


class InMemoryAuditLog:
    """Append-only record of events, grouped per ticket."""

    def __init__(self) -> None:
        self._entries: dict[str, list[TicketEvent]] = defaultdict(list)

    async def publish(self, event: TicketEvent) -> None:
        entries = self._entries[event.ticket_id]
        # Delivery is at-least-once; keep one entry per event id.
        if any(existing.id == event.id for existing in entries):
            return
        entries.append(event)

    def for_ticket(self, ticket_id: str) -> list[TicketEvent]:
        return sorted(self._entries.get(ticket_id, ()), key=lambda event: event.version)


class WebhookEventSink:
    """POST each event as JSON to an external endpoint.

    The client is owned by the caller and shared across deliveries.
    """

    def __init__(self, url: str, client: httpx.AsyncClient, *, timeout: float = 5.0) -> None:
        self._url = url
        self._client = client
        self._timeout = timeout

    async def publish(self, event: TicketEvent) -> None:
        response = await self._client.post(self._url, json=event_to_payload(event), timeout=self._timeout)
        response.raise_for_status()


class TicketEventDispatcher:
    """Deliver events to every sink in background tasks.

    ``emit`` never raises and never waits for delivery. A failing sink is
    logged and does not affect the other sinks.
    """

    def __init__(self, sinks: Iterable[TicketEventSink] = ()) -> None:
        self._sinks: list[TicketEventSink] = list(sinks)
        self._pending: set[asyncio.Task[None]] = set()

    def emit(self, event: TicketEvent) -> None:
        for sink in self._sinks:
            try:
                task = asyncio.get_running_loop().create_task(self._deliver(sink, event))
            except RuntimeError:
                logger.warning("No running event loop; dropping event %s for %r", event.id, sink)
                continue
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, sink: TicketEventSink, event: TicketEvent) -> None:
        try:
            await sink.publish(event)
        except Exception:
            logger.exception(
                "Failed to deliver %s event for ticket %s to %s",
                event.action.value,
                event.ticket_id,
                type(sink).__name__,
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries, used on shutdown and in tests."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
