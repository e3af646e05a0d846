from __future__ import annotations

from typing import Any

from slotshare.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "success": False,
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, *, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {
            "application/json": {
                "example": _error_example(code=code, message=message, details=details),
            }
        },
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response(
        "Validation error",
        code="VALIDATION_ERROR",
        message="Validation error",
        details={"errors": [{"loc": ["body", "serviceProviderId"], "msg": "Field required"}]},
    ),
    401: _response("Unauthorized", code="AUTH_UNAUTHORIZED", message="Missing or invalid bearer token"),
    403: _response("Forbidden", code="AUTH_FORBIDDEN", message="Insufficient role for this operation"),
    404: _response("Not found", code="NOT_FOUND", message="Service provider not found"),
    409: _response(
        "Conflict",
        code="ALREADY_ASSIGNED",
        message="You already have a slot assigned for this service provider",
    ),
    422: _response(
        "Unsupported country",
        code="UNSUPPORTED_COUNTRY",
        message="Service provider does not support the specified country",
    ),
    500: _response("Internal error", code="INTERNAL_ERROR", message="Internal server error"),
}
