from __future__ import annotations

import pytest
import pytest_asyncio

from app.tickets.errors import ForbiddenError, InvalidInputError
from app.tickets.queries import TicketQueryService
from app.tickets.state import TicketStatus


@pytest_asyncio.fixture
async def seeded(service, store, draft):
    pending = await service.create_ticket("alice", draft)
    mine = await service.create_ticket("alice", draft)
    await service.assume(mine.id, "bob")
    theirs = await service.create_ticket("dave", draft)
    await service.assume(theirs.id, "carol")
    done = await service.create_ticket("alice", draft)
    await service.assume(done.id, "bob")
    await service.resolve(done.id, "bob", "fixed")
    rejected = await service.create_ticket("dave", draft)
    await service.assume(rejected.id, "carol")
    await service.reject(rejected.id, "carol", "duplicate")
    withdrawn = await service.create_ticket("alice", draft)
    await service.withdraw(withdrawn.id, "alice")
    return {
        "pending": pending.id,
        "mine": mine.id,
        "theirs": theirs.id,
        "done": done.id,
        "rejected": rejected.id,
        "withdrawn": withdrawn.id,
    }


@pytest.mark.asyncio
async def test_reported_by_lists_reporter_tickets(store, seeded):
    queries = TicketQueryService(store)

    tickets = await queries.reported_by("alice")

    assert {ticket.id for ticket in tickets} == {seeded["pending"], seeded["mine"], seeded["done"]}
    only_done = await queries.reported_by("alice", status=TicketStatus.DONE)
    assert [ticket.id for ticket in only_done] == [seeded["done"]]


@pytest.mark.asyncio
async def test_assigned_view_shows_own_and_unclaimed_open_tickets(store, seeded):
    queries = TicketQueryService(store)

    tickets = await queries.assigned_to("bob")

    assert {ticket.id for ticket in tickets} == {seeded["pending"], seeded["mine"]}
    in_progress = await queries.assigned_to("bob", status=TicketStatus.IN_PROGRESS)
    assert [ticket.id for ticket in in_progress] == [seeded["mine"]]


@pytest.mark.asyncio
async def test_assigned_view_rejects_terminal_filter(store, seeded):
    with pytest.raises(InvalidInputError):
        await TicketQueryService(store).assigned_to("bob", status=TicketStatus.DONE)


@pytest.mark.asyncio
async def test_closed_view_lists_terminal_tickets(store, seeded):
    queries = TicketQueryService(store)

    tickets = await queries.closed()

    assert {ticket.id for ticket in tickets} == {seeded["done"], seeded["rejected"]}
    rejected = await queries.closed(status=TicketStatus.REJECTED)
    assert [ticket.id for ticket in rejected] == [seeded["rejected"]]
    with pytest.raises(InvalidInputError):
        await queries.closed(status=TicketStatus.PENDING)


@pytest.mark.asyncio
async def test_get_restricts_reporters_to_their_own_tickets(store, seeded):
    queries = TicketQueryService(store)

    assert (await queries.get(seeded["pending"], viewer_id="alice")).reporter_id == "alice"
    assert (await queries.get(seeded["theirs"], viewer_id="bob", can_view_all=True)).id == seeded["theirs"]
    with pytest.raises(ForbiddenError):
        await queries.get(seeded["theirs"], viewer_id="alice")


@pytest.mark.asyncio
async def test_projections_only_hold_consistent_snapshots(store, seeded):
    for ticket in await store.list_tickets():
        assert (ticket.assignee_id is not None) == (ticket.status == TicketStatus.IN_PROGRESS)
        assert (ticket.resolution is not None) == (ticket.status in {TicketStatus.DONE, TicketStatus.REJECTED})
