from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Body, Depends, Header, Query, Response, status
from pydantic import BaseModel, ConfigDict

from app.dependencies.auth import CurrentUser, Role
from app.dependencies.tickets import (
    HandlerUser,
    ReporterUser,
    get_audit_log,
    get_ticket_queries,
    get_ticket_service,
)
from app.tickets.errors import InvalidInputError
from app.tickets.models import Ticket, TicketDraft, TicketEvent
from app.tickets.notifications import InMemoryAuditLog
from app.tickets.queries import TicketQueryService
from app.tickets.service import TicketWorkflowService
from app.tickets.state import TicketAction, TicketPriority, TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketRejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str


class TicketResolveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str


class LocationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    area: str
    floor: str | None
    zone: str | None


class ResolutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    description: str
    resolved_at: datetime
    resolved_by: str


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reporter_id: str
    description: str
    location: LocationResponse
    priority: TicketPriority
    status: TicketStatus
    assignee_id: str | None
    resolution: ResolutionResponse | None
    rejection_reason: str | None
    created_at: datetime
    updated_at: datetime
    version: int


class TicketEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ticket_id: str
    action: TicketAction
    from_status: TicketStatus | None
    to_status: TicketStatus
    actor_id: str
    timestamp: datetime
    version: int


TicketServiceDep = Annotated[TicketWorkflowService, Depends(get_ticket_service)]
TicketQueriesDep = Annotated[TicketQueryService, Depends(get_ticket_queries)]
AuditLogDep = Annotated[InMemoryAuditLog, Depends(get_audit_log)]
IfMatch = Annotated[str | None, Header(alias="If-Match")]
StatusFilter = Annotated[TicketStatus | None, Query(alias="status")]
# Validated by the engine after the status and ownership checks.
PatchBody = Annotated[dict[str, Any], Body()]


def _expected_version(if_match: str | None) -> int | None:
    if if_match is None:
        return None
    value = if_match.strip()
    if value.startswith("W/"):
        value = value[2:]
    value = value.strip('"')
    try:
        return int(value)
    except ValueError:
        raise InvalidInputError("If-Match must carry a ticket version", details={"If-Match": if_match}) from None


def _to_response(ticket: Ticket, response: Response | None = None) -> TicketResponse:
    if response is not None:
        response.headers["ETag"] = f'"{ticket.version}"'
    return TicketResponse.model_validate(ticket)


def _to_event_response(event: TicketEvent) -> TicketEventResponse:
    return TicketEventResponse.model_validate(event)


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketDraft,
    service: TicketServiceDep,
    user: ReporterUser,
    response: Response,
) -> TicketResponse:
    ticket = await service.create_ticket(user.user_id, payload)
    return _to_response(ticket, response)


@router.get("/mine", response_model=list[TicketResponse])
async def list_my_tickets(
    queries: TicketQueriesDep,
    user: ReporterUser,
    status_filter: StatusFilter = None,
) -> list[TicketResponse]:
    tickets = await queries.reported_by(user.user_id, status=status_filter)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/assigned", response_model=list[TicketResponse])
async def list_assigned_tickets(
    queries: TicketQueriesDep,
    user: HandlerUser,
    status_filter: StatusFilter = None,
) -> list[TicketResponse]:
    tickets = await queries.assigned_to(user.user_id, status=status_filter)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/closed", response_model=list[TicketResponse])
async def list_closed_tickets(
    queries: TicketQueriesDep,
    _: HandlerUser,
    status_filter: StatusFilter = None,
) -> list[TicketResponse]:
    tickets = await queries.closed(status=status_filter)
    return [_to_response(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: str,
    queries: TicketQueriesDep,
    user: CurrentUser,
    response: Response,
) -> TicketResponse:
    ticket = await queries.get(ticket_id, viewer_id=user.user_id, can_view_all=user.has_role(Role.HANDLER))
    return _to_response(ticket, response)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def edit_ticket(
    ticket_id: str,
    payload: PatchBody,
    service: TicketServiceDep,
    user: ReporterUser,
    response: Response,
    if_match: IfMatch = None,
) -> TicketResponse:
    ticket = await service.edit(
        ticket_id, user.user_id, payload, expected_version=_expected_version(if_match)
    )
    return _to_response(ticket, response)


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def withdraw_ticket(
    ticket_id: str,
    service: TicketServiceDep,
    user: ReporterUser,
    if_match: IfMatch = None,
) -> Response:
    await service.withdraw(ticket_id, user.user_id, expected_version=_expected_version(if_match))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{ticket_id}/assume", response_model=TicketResponse)
async def assume_ticket(
    ticket_id: str,
    service: TicketServiceDep,
    user: HandlerUser,
    response: Response,
    if_match: IfMatch = None,
) -> TicketResponse:
    ticket = await service.assume(ticket_id, user.user_id, expected_version=_expected_version(if_match))
    return _to_response(ticket, response)


@router.post("/{ticket_id}/renounce", response_model=TicketResponse)
async def renounce_ticket(
    ticket_id: str,
    service: TicketServiceDep,
    user: HandlerUser,
    response: Response,
    if_match: IfMatch = None,
) -> TicketResponse:
    ticket = await service.renounce(ticket_id, user.user_id, expected_version=_expected_version(if_match))
    return _to_response(ticket, response)


@router.post("/{ticket_id}/reject", response_model=TicketResponse)
async def reject_ticket(
    ticket_id: str,
    payload: TicketRejectRequest,
    service: TicketServiceDep,
    user: HandlerUser,
    response: Response,
    if_match: IfMatch = None,
) -> TicketResponse:
    ticket = await service.reject(
        ticket_id, user.user_id, payload.reason, expected_version=_expected_version(if_match)
    )
    return _to_response(ticket, response)


@router.post("/{ticket_id}/resolve", response_model=TicketResponse)
async def resolve_ticket(
    ticket_id: str,
    payload: TicketResolveRequest,
    service: TicketServiceDep,
    user: HandlerUser,
    response: Response,
    if_match: IfMatch = None,
) -> TicketResponse:
    ticket = await service.resolve(
        ticket_id, user.user_id, payload.description, expected_version=_expected_version(if_match)
    )
    return _to_response(ticket, response)


@router.get("/{ticket_id}/audit", response_model=list[TicketEventResponse])
async def get_ticket_audit(
    ticket_id: str,
    audit_log: AuditLogDep,
    queries: TicketQueriesDep,
    user: HandlerUser,
) -> list[TicketEventResponse]:
    await queries.get(ticket_id, viewer_id=user.user_id, can_view_all=True)
    return [_to_event_response(event) for event in audit_log.for_ticket(ticket_id)]
