from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from app.dependencies.auth import Role, User, role_required
from app.tickets.notifications import InMemoryAuditLog
from app.tickets.queries import TicketQueryService
from app.tickets.service import TicketWorkflowService

require_reporter = role_required(Role.REPORTER)
require_handler = role_required(Role.HANDLER)

ReporterUser = Annotated[User, Depends(require_reporter)]
HandlerUser = Annotated[User, Depends(require_handler)]


async def get_ticket_service(request: Request) -> TicketWorkflowService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_ticket_queries(request: Request) -> TicketQueryService:
    queries = getattr(request.app.state, "ticket_queries", None)
    if queries is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return queries


async def get_audit_log(request: Request) -> InMemoryAuditLog:
    audit_log = getattr(request.app.state, "audit_log", None)
    if audit_log is None:
        raise HTTPException(status_code=503, detail="Audit log is not configured")
    return audit_log
