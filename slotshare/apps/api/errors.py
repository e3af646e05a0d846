from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from slotshare.apps.api.response import error_response
from slotshare.core.errors import (
    AlreadyAssignedError,
    ConflictError,
    DomainValidationError,
    InvalidStateTransitionError,
    NotFoundError,
    PersistenceError,
    SlotShareError,
    UnsupportedCountryError,
)


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "VALIDATION_ERROR",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "UNPROCESSABLE_ENTITY",
    500: "INTERNAL_ERROR",
}

# Ordered most-specific first: subclasses must precede their bases.
DOMAIN_ERROR_TABLE: tuple[tuple[type[SlotShareError], int, str], ...] = (
    (DomainValidationError, 400, "VALIDATION_ERROR"),
    (NotFoundError, 404, "NOT_FOUND"),
    (AlreadyAssignedError, 409, "ALREADY_ASSIGNED"),
    (InvalidStateTransitionError, 409, "INVALID_STATE_TRANSITION"),
    (ConflictError, 409, "CONFLICT"),
    (UnsupportedCountryError, 422, "UNSUPPORTED_COUNTRY"),
    (PersistenceError, 500, "PERSISTENCE_FAILURE"),
)


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def classify_domain_error(exc: SlotShareError) -> tuple[int, str]:
    for error_type, status_code, code in DOMAIN_ERROR_TABLE:
        if isinstance(exc, error_type):
            return status_code, code
    return 500, "INTERNAL_ERROR"


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from FastAPI HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


async def domain_exception_handler(request: Request, exc: SlotShareError) -> JSONResponse:
    status_code, code = classify_domain_error(exc)
    if status_code >= 500:
        # Never echo storage internals to clients.
        logger.error("request_failed path=%s code=%s", request.url.path, code, exc_info=exc)
        message = "A storage error occurred" if isinstance(exc, PersistenceError) else "Internal server error"
    else:
        message = str(exc)
    payload = error_response(request=request, code=code, message=message)
    return JSONResponse(content=payload, status_code=status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404 route misses, 405) are wrapped too.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(request=request, code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed input is a client error: 400 with field-level details.
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    payload = error_response(
        request=request,
        code="VALIDATION_ERROR",
        message="Validation error",
        details={"errors": errors},
    )
    return JSONResponse(content=payload, status_code=400)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces; return a stable internal error envelope.
    logger.error("request_unhandled_error path=%s", request.url.path, exc_info=exc)
    payload = error_response(
        request=request,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )
    return JSONResponse(content=payload, status_code=500)
