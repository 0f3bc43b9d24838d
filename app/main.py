from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from app.api.errors import register_error_handlers
from app.api.routes import ping, tickets
from app.core.config import Settings, get_settings
from app.core.logging import configure_logging, init_tracer, shutdown_tracer
from app.services.postgres import PostgresConnection
from app.tickets.notifications import (
    InMemoryAuditLog,
    TicketEventDispatcher,
    TicketEventSink,
    WebhookEventSink,
)
from app.tickets.queries import TicketQueryService
from app.tickets.repository import PostgresTicketStore
from app.tickets.service import TicketWorkflowService
from app.tickets.store import InMemoryTicketStore, TicketStore

logger = logging.getLogger(__name__)


def install_ticket_services(
    app: FastAPI,
    store: TicketStore,
    settings: Settings,
    *,
    http_client: httpx.AsyncClient | None = None,
) -> TicketWorkflowService:
    """Wire the workflow, query and audit services onto ``app.state``.

    The webhook sink is only installed when both a URL and ``http_client``
    are provided.
    """

    audit_log = InMemoryAuditLog()
    sinks: list[TicketEventSink] = [audit_log]
    if settings.notification_webhook_url:
        if http_client is None:
            logger.warning(
                "Webhook %s configured without an HTTP client; skipping", settings.notification_webhook_url
            )
        else:
            sinks.append(
                WebhookEventSink(
                    settings.notification_webhook_url,
                    http_client,
                    timeout=settings.notification_timeout_seconds,
                )
            )
    service = TicketWorkflowService(
        store,
        dispatcher=TicketEventDispatcher(sinks),
        max_attempts=settings.commit_retry_attempts,
    )
    app.state.ticket_service = service
    app.state.ticket_queries = TicketQueryService(store)
    app.state.audit_log = audit_log
    return service


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    app.state.ticket_service = None
    app.state.postgres = None
    app.state.http_client = None
    postgres: PostgresConnection | None = None
    http_client: httpx.AsyncClient | None = None
    try:
        if settings.notification_webhook_url:
            http_client = httpx.AsyncClient(timeout=settings.notification_timeout_seconds)
            app.state.http_client = http_client
        if settings.store_backend == "postgres":
            postgres = PostgresConnection(
                dsn=settings.postgres_dsn,
                min_size=settings.postgres_pool_min_size,
                max_size=settings.postgres_pool_max_size,
            )
            postgres_store = PostgresTicketStore(await postgres.get_pool())
            app.state.postgres = postgres
            await postgres_store.ensure_schema()
            store: TicketStore = postgres_store
        else:
            store = InMemoryTicketStore()
        install_ticket_services(app, store, settings, http_client=http_client)
        logger.info("Ticket service ready (store=%s)", settings.store_backend)
    except Exception:
        logger.exception("Ticket service initialisation failed; ticket endpoints will answer 503")
        app.state.ticket_service = None
        app.state.ticket_queries = None
    try:
        yield
    finally:
        service = getattr(app.state, "ticket_service", None)
        if service is not None:
            await service.dispatcher.drain()
        if http_client is not None:
            await http_client.aclose()
        if postgres is not None:
            await postgres.close()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    register_error_handlers(app)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    return app


app = create_app()
