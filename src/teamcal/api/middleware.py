"""Error envelope for the HTTP API.

Every failure leaves the API as::

    {"error": {"code": "...", "message": "...", "details": {...} | null}}

``TeamcalError`` subclasses carry their own status code; a bare ``ValueError``
or a request whose parameters or body fail validation is bad input (400);
anything else becomes ``INTERNAL_ERROR`` (500).
Server-side failures never echo their message or details to the client.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from teamcal.api.models import ErrorDetail, ErrorResponse
from teamcal.errors import InternalError, InvalidArgumentError, TeamcalError

logger = logging.getLogger(__name__)

_GENERIC_MESSAGE = "Internal server error"


def error_response(
    status_code: int, code: str, message: str, details: dict[str, Any] | None = None
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=body.model_dump())


async def _on_teamcal_error(request: Request, exc: TeamcalError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: code=%s", request.method, request.url.path, exc.code, exc_info=exc
        )
        return error_response(exc.status_code, exc.code, _GENERIC_MESSAGE)
    logger.info(
        "%s %s rejected: code=%s %s", request.method, request.url.path, exc.code, exc.message
    )
    return error_response(exc.status_code, exc.code, exc.message, exc.details)


async def _on_value_error(request: Request, exc: ValueError) -> JSONResponse:
    logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return error_response(400, InvalidArgumentError.code, str(exc))


async def _on_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    fields = [
        ".".join(str(part) for part in error.get("loc", ())) for error in exc.errors()
    ]
    logger.info("%s %s rejected: invalid %s", request.method, request.url.path, fields)
    return error_response(
        400, InvalidArgumentError.code, "Request validation failed", {"fields": fields}
    )


class CatchAllErrorMiddleware(BaseHTTPMiddleware):
    """Last line of defence: unhandled exceptions become a generic 500 envelope."""

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception:
            logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
            return error_response(500, InternalError.code, _GENERIC_MESSAGE)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TeamcalError, _on_teamcal_error)  # type: ignore[arg-type]
    app.add_exception_handler(
        RequestValidationError, _on_request_validation_error  # type: ignore[arg-type]
    )
    app.add_exception_handler(ValueError, _on_value_error)  # type: ignore[arg-type]
    app.add_middleware(CatchAllErrorMiddleware)
