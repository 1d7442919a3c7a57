"""X-Request-ID assignment and the per-request access log line.

Registered outermost so auth failures carry the header too. The id is bound
to the log context for the request and handed to any Celery task the request
enqueues.
"""

import re
import time
from uuid import UUID, uuid4

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from coursecast.logging import clear_request_context, get_logger, set_request_context

REQUEST_ID_HEADER = "X-Request-ID"

_TOKEN = re.compile(r"[A-Za-z0-9._-]{1,128}")

# No access log line for these
QUIET_PATHS = frozenset({"/health"})

logger = get_logger(__name__)


def _as_uuid(value: str) -> UUID | None:
    if len(value) != 36:
        return None
    try:
        parsed = UUID(value)
    except ValueError:
        return None
    return parsed if str(parsed) == value.lower() else None


def is_valid_request_id(value: str) -> bool:
    """A canonical UUID, or 1-128 characters of ``[A-Za-z0-9._-]``."""
    return _as_uuid(value) is not None or _TOKEN.fullmatch(value) is not None


def resolve_request_id(incoming: str | None) -> str:
    """The caller's id when acceptable (UUIDs lowercased), else a fresh UUID4."""
    if not incoming or not is_valid_request_id(incoming):
        return str(uuid4())
    as_uuid = _as_uuid(incoming)
    return str(as_uuid) if as_uuid is not None else incoming


class RequestIDMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, log_requests: bool = True):
        super().__init__(app)
        self.log_requests = log_requests

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.monotonic()
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        set_request_context(request_id, path=request.url.path, method=request.method)

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_failed")
            clear_request_context()
            raise

        viewer = getattr(request.state, "viewer", None)
        if viewer is not None:
            set_request_context(request_id, user_id=str(viewer.user_id))
        response.headers[REQUEST_ID_HEADER] = request_id

        if self.log_requests and request.url.path not in QUIET_PATHS:
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_ms=round((time.monotonic() - started) * 1000, 2),
            )
        clear_request_context()
        return response
