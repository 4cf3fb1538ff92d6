"""Translate service errors into the uniform ``{success: false, error}`` body."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from planner_schemas import ErrorEnvelope
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import AuthServiceError, RateLimited

logger = logging.getLogger(__name__)


def error_response(
    status_code: int,
    message: str,
    details: object = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    envelope = ErrorEnvelope(error=message, details=details)
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(exclude_none=True),
        headers=headers,
    )


def _describe_validation_errors(exc: RequestValidationError) -> tuple[str, list[dict]]:
    details = []
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        message = error.get("msg", "invalid value")
        details.append({"field": location, "message": message})
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages) or "Invalid request", details


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers that own the HTTP error shape for the whole service."""

    @app.exception_handler(AuthServiceError)
    async def handle_service_error(request: Request, exc: AuthServiceError):
        headers = None
        if isinstance(exc, RateLimited) and exc.retry_after_seconds:
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        else:
            logger.info(
                "%s %s rejected with %s: %s",
                request.method,
                request.url.path,
                exc.status_code,
                exc.message,
            )
        return error_response(exc.status_code, exc.message, exc.details, headers)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        message, details = _describe_validation_errors(exc)
        return error_response(status.HTTP_400_BAD_REQUEST, message, details)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return error_response(exc.status_code, str(exc.detail), headers=getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.exception("unhandled error on %s %s", request.method, request.url.path)
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Server error")
