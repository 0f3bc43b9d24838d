"""Maintenance ticket domain models and workflow services."""

from .errors import (
    ConflictError,
    ForbiddenError,
    IllegalTransitionError,
    InvalidInputError,
    TicketNotFoundError,
    TicketWorkflowError,
    UnavailableError,
)
from .models import Ticket, TicketDraft, TicketEvent, TicketLocation, TicketPatch, TicketResolution
from .notifications import InMemoryAuditLog, TicketEventDispatcher, WebhookEventSink
from .queries import TicketQueryService
from .repository import PostgresTicketStore
from .service import TicketWorkflowService
from .state import TicketAction, TicketPriority, TicketStateMachine, TicketStatus
from .store import InMemoryTicketStore, TicketStore
from .workflow import TicketTransition, apply_action, open_ticket

__all__ = [
    "ConflictError",
    "ForbiddenError",
    "IllegalTransitionError",
    "InvalidInputError",
    "TicketNotFoundError",
    "TicketWorkflowError",
    "UnavailableError",
    "Ticket",
    "TicketDraft",
    "TicketEvent",
    "TicketLocation",
    "TicketPatch",
    "TicketResolution",
    "InMemoryAuditLog",
    "TicketEventDispatcher",
    "WebhookEventSink",
    "TicketQueryService",
    "PostgresTicketStore",
    "TicketWorkflowService",
    "TicketAction",
    "TicketPriority",
    "TicketStateMachine",
    "TicketStatus",
    "InMemoryTicketStore",
    "TicketStore",
    "TicketTransition",
    "apply_action",
    "open_ticket",
]
