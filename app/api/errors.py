"""Exception handlers translating workflow errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.tickets.errors import TicketWorkflowError, UnavailableError

logger = logging.getLogger(__name__)


async def ticket_error_handler(request: Request, exc: TicketWorkflowError) -> JSONResponse:
    if isinstance(exc, UnavailableError):
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
    else:
        logger.info("%s %s rejected with %s: %s", request.method, request.url.path, exc.error_code, exc.message)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": ".".join(str(part) for part in error.get("loc", ())), "msg": str(error.get("msg", ""))}
        for error in exc.errors()
    ]
    logger.info("%s %s invalid payload: %s", request.method, request.url.path, errors)
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request payload", "code": "INVALID_INPUT", "details": {"errors": errors}},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TicketWorkflowError, ticket_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
