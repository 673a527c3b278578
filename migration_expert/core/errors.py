"""
Error taxonomy and the single JSON error shape every failure is rendered in:

    {"error": {"code", "message", "request_id"}, "detail": message}

`detail` mirrors the message for clients that only read FastAPI's default
field. Messages are safe to show to end users; internals (stack traces,
provider payloads, SQL) only ever go to the log.
"""

import logging
from typing import Optional
from uuid import uuid4

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException
from starlette.requests import Request

from migration_expert.core.logging import LOGGER_NAME, get_request_id

logger = logging.getLogger(LOGGER_NAME)

MALFORMED_BODY_MESSAGE = "Request body is malformed or incomplete"
INTERNAL_ERROR_MESSAGE = "Unexpected error"


class AppError(Exception):
    """Base for every failure the API reports deliberately."""

    code = "app_error"
    status_code = 500

    def __init__(self, message: str, *, code: Optional[str] = None, status_code: Optional[int] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.status_code = status_code or self.status_code
        self.request_id = request_id


class InvalidRequestError(AppError, ValueError):
    """Malformed or missing input; raised before any external call."""
    code = "invalid_request"
    status_code = 400


class UnauthenticatedError(AppError):
    code = "unauthenticated"
    status_code = 401


class RateLimitError(AppError):
    code = "rate_limited"
    status_code = 429


class PayloadTooLargeError(AppError):
    code = "payload_too_large"
    status_code = 413


class UpstreamUnavailableError(AppError):
    """The identity provider or the generative-text service failed."""
    code = "upstream_unavailable"
    status_code = 500


class GenerationFailedError(UpstreamUnavailableError):
    code = "generation_failed"


class PersistenceError(AppError):
    """A read, write or delete against the datastore failed."""
    code = "persistence_failed"
    status_code = 500


def resolve_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", None) or get_request_id() or str(uuid4())


def error_response(request: Request, status_code: int, code: str, message: str, request_id: Optional[str] = None) -> JSONResponse:
    rid = request_id or resolve_request_id(request)
    body = {"error": {"code": code, "message": message, "request_id": rid}, "detail": message}
    return JSONResponse(status_code=status_code, content=body, headers={"x-request-id": rid})


async def app_error_handler(request: Request, exc: AppError):
    rid = exc.request_id or resolve_request_id(request)
    logger.log(
        logging.ERROR if exc.status_code >= 500 else logging.WARNING,
        "app.error",
        extra={
            "request_id": rid,
            "error_code": exc.code,
            "error_message": exc.message,
            "status": exc.status_code,
            "path": request.url.path,
        },
    )
    return error_response(request, exc.status_code, exc.code, exc.message, rid)


async def validation_error_handler(request: Request, exc: RequestValidationError):
    # Field-level details stay in the log; clients get one generic message
    rid = resolve_request_id(request)
    fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
    logger.warning(
        "request.invalid",
        extra={"request_id": rid, "error_code": InvalidRequestError.code, "fields": fields, "path": request.url.path},
    )
    return error_response(request, 400, InvalidRequestError.code, MALFORMED_BODY_MESSAGE, rid)


async def http_error_handler(request: Request, exc: HTTPException):
    rid = resolve_request_id(request)
    code = "not_found" if exc.status_code == 404 else "http_error"
    logger.warning("http.error", extra={"request_id": rid, "error_code": code, "status": exc.status_code})
    return error_response(request, exc.status_code, code, str(exc.detail or "HTTP error"), rid)


async def unhandled_exception_handler(request: Request, exc: Exception):
    rid = resolve_request_id(request)
    logger.error(
        "unhandled.exception",
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"request_id": rid, "error_code": "internal_error", "path": request.url.path},
    )
    return error_response(request, 500, "internal_error", INTERNAL_ERROR_MESSAGE, rid)
