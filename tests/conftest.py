from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.tickets.notifications import InMemoryAuditLog, TicketEventDispatcher
from app.tickets.service import TicketWorkflowService
from app.tickets.store import InMemoryTicketStore

_DRAFT = {
    "description": "Leak in room 4",
    "location": {"floor": "2", "area": "Room 4", "zone": "East wing"},
    "priority": "URGENT",
}


class FakeClock:
    """Monotonic clock advancing one second per call."""

    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def audit_log() -> InMemoryAuditLog:
    return InMemoryAuditLog()


@pytest.fixture
def service(store, audit_log, clock) -> TicketWorkflowService:
    return TicketWorkflowService(store, dispatcher=TicketEventDispatcher([audit_log]), clock=clock)


@pytest.fixture
def draft() -> dict:
    return {**_DRAFT, "location": dict(_DRAFT["location"])}
