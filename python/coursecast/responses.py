"""Response envelopes and the exception handlers that produce them.

Success bodies are ``{"data": ...}``. Error bodies are
``{"error": {"code": "E_...", "message": "...", "request_id": "..."}}``.

Error responses are never cached: a 403 on playback must not be served to
the next viewer from a shared cache. A 503 from the object store or the
transcoding provider carries Retry-After so the recording client backs off
before re-requesting an upload ticket.
"""

import json
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from coursecast.errors import ApiError, ApiErrorCode
from coursecast.logging import get_logger, get_request_id

logger = get_logger(__name__)

RETRY_AFTER_SECONDS = 5

# Routes that read and verify their own raw body.
RAW_BODY_PATHS = frozenset({"/webhooks/transcode"})

_STATUS_TO_CODE = {
    400: ApiErrorCode.E_INVALID_REQUEST,
    401: ApiErrorCode.E_UNAUTHENTICATED,
    403: ApiErrorCode.E_FORBIDDEN,
    404: ApiErrorCode.E_NOT_FOUND,
    405: ApiErrorCode.E_INVALID_REQUEST,
    413: ApiErrorCode.E_FILE_TOO_LARGE,
    422: ApiErrorCode.E_INVALID_REQUEST,
}


def success_response(data: Any) -> dict[str, Any]:
    return {"data": data}


def error_response(
    code: ApiErrorCode, message: str, request_id: str | None = None
) -> dict[str, Any]:
    """Build the error envelope, taking request_id from log context when not given."""
    request_id = request_id or get_request_id()
    error = {"code": code.value, "message": message}
    if request_id:
        error["request_id"] = request_id
    return {"error": error}


def _error_json(status_code: int, code: ApiErrorCode, message: str) -> JSONResponse:
    headers = {"Cache-Control": "no-store"}
    if status_code == 503:
        headers["Retry-After"] = str(RETRY_AFTER_SECONDS)
    return JSONResponse(
        status_code=status_code, content=error_response(code, message), headers=headers
    )


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning(
            "api_error_upstream",
            code=exc.code.value,
            status=exc.status_code,
            message=exc.message,
        )
    return _error_json(exc.status_code, exc.code, exc.message)


async def http_exception_handler(request: Request, exc: Any) -> JSONResponse:
    """Map Starlette's own 404/405/413 responses onto the envelope."""
    code = _STATUS_TO_CODE.get(exc.status_code, ApiErrorCode.E_INTERNAL)
    message = str(exc.detail) if exc.detail else "Request failed"
    return _error_json(exc.status_code, code, message)


def _first_problem(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    # loc is ("body" | "query" | "path" | "form", field, ...)
    field = ".".join(str(part) for part in first.get("loc", ())[1:])
    return f"{field}: {first.get('msg')}" if field else str(first.get("msg"))


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Schema violations are 400 E_INVALID_REQUEST, not FastAPI's 422."""
    return _error_json(400, ApiErrorCode.E_INVALID_REQUEST, _first_problem(exc))


async def reject_malformed_json(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """HTTP middleware: a JSON body that does not parse is 400 before routing."""
    if (
        request.method in ("POST", "PUT", "PATCH")
        and request.url.path not in RAW_BODY_PATHS
        and "application/json" in request.headers.get("content-type", "")
    ):
        body = await request.body()
        if body:
            try:
                json.loads(body)
            except json.JSONDecodeError:
                return _error_json(400, ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body")
    return await call_next(request)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """500 E_INTERNAL; the exception is logged, never echoed to the client."""
    logger.exception("unhandled_exception", error_type=type(exc).__name__)
    return _error_json(500, ApiErrorCode.E_INTERNAL, "Internal server error")
