from __future__ import annotations

from collections.abc import Collection
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import asyncpg

from .errors import ConflictError, TicketNotFoundError, UnavailableError
from .models import Ticket, TicketLocation, TicketResolution
from .state import TicketPriority, TicketStatus
from .store import TicketMutator

_STORE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_TICKET_COLUMNS = """
    id, reporter_id, description, location_area, location_floor, location_zone, priority, status,
    assignee_id, resolution_description, resolved_at, resolved_by, rejection_reason,
    created_at, updated_at, withdrawn_at, version
"""


class PostgresTicketStore:
    """Ticket store persisted in PostgreSQL.

    ``commit`` locks the row with ``SELECT ... FOR UPDATE`` and writes with a
    version-guarded ``UPDATE`` inside one transaction, so two writers racing
    on the same ticket cannot both succeed.
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS maintenance_tickets (
        id TEXT PRIMARY KEY,
        reporter_id TEXT NOT NULL,
        description TEXT NOT NULL,
        location_area TEXT NOT NULL,
        location_floor TEXT NULL,
        location_zone TEXT NULL,
        priority TEXT NOT NULL,
        status TEXT NOT NULL,
        assignee_id TEXT NULL,
        resolution_description TEXT NULL,
        resolved_at TIMESTAMPTZ NULL,
        resolved_by TEXT NULL,
        rejection_reason TEXT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL,
        withdrawn_at TIMESTAMPTZ NULL,
        version INTEGER NOT NULL DEFAULT 1,
        CONSTRAINT maintenance_tickets_assignee_chk
            CHECK ((assignee_id IS NOT NULL) = (status = 'IN_PROGRESS')),
        CONSTRAINT maintenance_tickets_resolution_chk
            CHECK ((resolution_description IS NOT NULL) = (status IN ('DONE', 'REJECTED')))
    )
    """

    _CREATE_INDEXES_SQL = """
    CREATE INDEX IF NOT EXISTS maintenance_tickets_status_idx ON maintenance_tickets (status, created_at DESC)
    """

    _INSERT_TICKET_SQL = f"""
    INSERT INTO maintenance_tickets ({_TICKET_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, 1)
    RETURNING {_TICKET_COLUMNS}
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM maintenance_tickets
    WHERE id = $1 AND withdrawn_at IS NULL
    """

    _SELECT_TICKET_FOR_UPDATE_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM maintenance_tickets
    WHERE id = $1
    FOR UPDATE
    """

    _UPDATE_TICKET_SQL = f"""
    UPDATE maintenance_tickets
    SET description = $3,
        location_area = $4,
        location_floor = $5,
        location_zone = $6,
        priority = $7,
        status = $8,
        assignee_id = $9,
        resolution_description = $10,
        resolved_at = $11,
        resolved_by = $12,
        rejection_reason = $13,
        updated_at = $14,
        withdrawn_at = $15,
        version = version + 1
    WHERE id = $1 AND version = $2
    RETURNING {_TICKET_COLUMNS}
    """

    _LIST_TICKETS_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM maintenance_tickets
    WHERE withdrawn_at IS NULL
      AND ($1::TEXT IS NULL OR reporter_id = $1)
      AND ($2::TEXT[] IS NULL OR status = ANY($2::TEXT[]))
    ORDER BY created_at DESC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        try:
            async with self._pool.acquire() as connection:
                yield connection
        except _STORE_ERRORS as exc:
            raise UnavailableError("Ticket store is unavailable") from exc

    async def ensure_schema(self) -> None:
        async with self._connection() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_INDEXES_SQL)

    async def create(self, ticket: Ticket) -> Ticket:
        resolution = ticket.resolution
        async with self._connection() as connection:
            try:
                row = await connection.fetchrow(
                    self._INSERT_TICKET_SQL,
                    ticket.id,
                    ticket.reporter_id,
                    ticket.description,
                    ticket.location.area,
                    ticket.location.floor,
                    ticket.location.zone,
                    ticket.priority.value,
                    ticket.status.value,
                    ticket.assignee_id,
                    resolution.description if resolution else None,
                    resolution.resolved_at if resolution else None,
                    resolution.resolved_by if resolution else None,
                    ticket.rejection_reason,
                    ticket.created_at,
                    ticket.updated_at,
                    ticket.withdrawn_at,
                )
            except asyncpg.UniqueViolationError as exc:
                raise ConflictError(f"Ticket {ticket.id} already exists") from exc
        if row is None:
            raise UnavailableError("Failed to insert ticket")
        return self._row_to_ticket(row)

    async def get(self, ticket_id: str) -> Ticket:
        async with self._connection() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return self._row_to_ticket(row)

    async def commit(self, ticket_id: str, expected_version: int, mutator: TicketMutator) -> Ticket:
        async with self._connection() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(self._SELECT_TICKET_FOR_UPDATE_SQL, ticket_id)
                if row is None or row["withdrawn_at"] is not None:
                    raise TicketNotFoundError(f"Ticket {ticket_id} not found")
                current = self._row_to_ticket(row)
                if current.version != expected_version:
                    raise ConflictError(
                        f"Ticket {ticket_id} changed since version {expected_version}",
                        details={"expected_version": expected_version, "current_version": current.version},
                    )
                updated = replace(mutator(current), id=current.id)
                resolution = updated.resolution
                written = await connection.fetchrow(
                    self._UPDATE_TICKET_SQL,
                    ticket_id,
                    expected_version,
                    updated.description,
                    updated.location.area,
                    updated.location.floor,
                    updated.location.zone,
                    updated.priority.value,
                    updated.status.value,
                    updated.assignee_id,
                    resolution.description if resolution else None,
                    resolution.resolved_at if resolution else None,
                    resolution.resolved_by if resolution else None,
                    updated.rejection_reason,
                    updated.updated_at,
                    updated.withdrawn_at,
                )
                if written is None:
                    raise ConflictError(
                        f"Ticket {ticket_id} changed since version {expected_version}",
                        details={"expected_version": expected_version},
                    )
        return self._row_to_ticket(written)

    async def list_tickets(
        self,
        *,
        reporter_id: str | None = None,
        statuses: Collection[TicketStatus] | None = None,
    ) -> list[Ticket]:
        status_values = None if statuses is None else [status.value for status in statuses]
        async with self._connection() as connection:
            rows = await connection.fetch(self._LIST_TICKETS_SQL, reporter_id, status_values)
        return [self._row_to_ticket(row) for row in rows]

    @staticmethod
    def _row_to_ticket(row: Any) -> Ticket:
        resolution = None
        if row["resolution_description"] is not None:
            resolution = TicketResolution(
                description=str(row["resolution_description"]),
                resolved_at=_ensure_datetime(row["resolved_at"]),
                resolved_by=str(row["resolved_by"]),
            )
        withdrawn_at = row["withdrawn_at"]
        return Ticket(
            id=str(row["id"]),
            reporter_id=str(row["reporter_id"]),
            description=str(row["description"]),
            location=TicketLocation(
                area=str(row["location_area"]),
                floor=row["location_floor"],
                zone=row["location_zone"],
            ),
            priority=TicketPriority(str(row["priority"])),
            status=TicketStatus(str(row["status"])),
            assignee_id=row["assignee_id"],
            resolution=resolution,
            rejection_reason=row["rejection_reason"],
            created_at=_ensure_datetime(row["created_at"]),
            updated_at=_ensure_datetime(row["updated_at"]),
            withdrawn_at=_ensure_datetime(withdrawn_at) if withdrawn_at is not None else None,
            version=int(row["version"]),
        )


def _ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return datetime.fromisoformat(str(value))
