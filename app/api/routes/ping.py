import logging

import asyncpg
from fastapi import APIRouter, HTTPException, Request, status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health probe")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready", summary="Ticket store readiness probe")
async def ready(request: Request) -> dict[str, str]:
    if getattr(request.app.state, "ticket_service", None) is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Ticket service not configured"
        )
    postgres = getattr(request.app.state, "postgres", None)
    if postgres is not None:
        try:
            await postgres.test_connection()
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            logger.warning("Readiness probe failed: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Ticket store unavailable"
            ) from exc
    return {"status": "ok"}
