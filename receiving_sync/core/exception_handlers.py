"""Translate exceptions into the ``{success: false, error, code}`` envelope."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from receiving_sync.core.errors import ErrorKind, ReceivingError
from receiving_sync.core.responses import error_response

logger = logging.getLogger(__name__)


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()) if p != "body")
        reason = error.get("msg") or error.get("type") or "invalid"
        parts.append(f"{location}: {reason}" if location else str(reason))
    return "; ".join(parts) or "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ReceivingError)
    async def _receiving_error(request: Request, exc: ReceivingError):
        logger.info(f"{request.method} {request.url.path} rejected ({exc.kind.value}): {exc.message}")
        return error_response(exc.kind, exc.message)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError):
        return error_response(ErrorKind.INVALID_INPUT, _validation_message(exc), status_code=422)

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request rejected"
        return error_response(ErrorKind.from_status_code(exc.status_code), message, status_code=exc.status_code)

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(request: Request, exc: RateLimitExceeded):
        logger.warning(f"Rate limit hit on {request.method} {request.url.path}: {exc.detail}")
        response = error_response(ErrorKind.RATE_LIMITED, f"Rate limit exceeded: {exc.detail}")
        return request.app.state.limiter._inject_headers(response, request.state.view_rate_limit)

    @app.exception_handler(SQLAlchemyError)
    async def _store_error(request: Request, exc: SQLAlchemyError):
        logger.error(f"Store failure on {request.method} {request.url.path}", exc_info=exc)
        # DBAPI errors wrap the driver exception; its text is the store message
        return error_response(ErrorKind.STORE_FAILURE, f"Storage failure: {getattr(exc, 'orig', None) or exc}")

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception):
        logger.error(f"Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return error_response(ErrorKind.STORE_FAILURE, "Internal server error")
