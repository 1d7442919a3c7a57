"""Error codes, their HTTP statuses, and the exceptions that carry them.

Domain exceptions that never reach the HTTP layer directly (StateConflict)
live here too so services and tasks share one import.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_WEBHOOK_UNVERIFIED = "E_WEBHOOK_UNVERIFIED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_INTERNAL_ONLY = "E_INTERNAL_ONLY"
    E_PLAYBACK_FORBIDDEN = "E_PLAYBACK_FORBIDDEN"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_COURSE_NOT_FOUND = "E_COURSE_NOT_FOUND"
    E_LESSON_NOT_FOUND = "E_LESSON_NOT_FOUND"
    E_VIDEO_NOT_FOUND = "E_VIDEO_NOT_FOUND"
    E_SUBTITLE_NOT_FOUND = "E_SUBTITLE_NOT_FOUND"
    E_TICKET_NOT_FOUND = "E_TICKET_NOT_FOUND"
    E_SUBSCRIPTION_NOT_FOUND = "E_SUBSCRIPTION_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_TITLE_INVALID = "E_TITLE_INVALID"
    E_INVALID_CONTENT_TYPE = "E_INVALID_CONTENT_TYPE"
    E_INVALID_FILE_TYPE = "E_INVALID_FILE_TYPE"
    E_INVALID_LANGUAGE = "E_INVALID_LANGUAGE"
    E_DUPLICATE_SUBTITLE = "E_DUPLICATE_SUBTITLE"
    E_ALREADY_SUBSCRIBED = "E_ALREADY_SUBSCRIBED"
    E_STORAGE_MISSING = "E_STORAGE_MISSING"

    # Payload too large (413)
    E_FILE_TOO_LARGE = "E_FILE_TOO_LARGE"

    # Conflict / gone
    E_STATE_CONFLICT = "E_STATE_CONFLICT"  # 409
    E_TICKET_EXPIRED = "E_TICKET_EXPIRED"  # 410

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_STORE_UNAVAILABLE = "E_STORE_UNAVAILABLE"  # 503
    E_PROVIDER_UNAVAILABLE = "E_PROVIDER_UNAVAILABLE"  # 503
    E_UPLOAD_FAILED = "E_UPLOAD_FAILED"  # 502
    E_STORAGE_ERROR = "E_STORAGE_ERROR"  # 500
    E_INTERNAL = "E_INTERNAL"  # 500


ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_WEBHOOK_UNVERIFIED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_INTERNAL_ONLY: 403,
    ApiErrorCode.E_PLAYBACK_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_COURSE_NOT_FOUND: 404,
    ApiErrorCode.E_LESSON_NOT_FOUND: 404,
    ApiErrorCode.E_VIDEO_NOT_FOUND: 404,
    ApiErrorCode.E_SUBTITLE_NOT_FOUND: 404,
    ApiErrorCode.E_TICKET_NOT_FOUND: 404,
    ApiErrorCode.E_SUBSCRIPTION_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_TITLE_INVALID: 400,
    ApiErrorCode.E_INVALID_CONTENT_TYPE: 400,
    ApiErrorCode.E_INVALID_FILE_TYPE: 400,
    ApiErrorCode.E_INVALID_LANGUAGE: 400,
    ApiErrorCode.E_DUPLICATE_SUBTITLE: 400,
    ApiErrorCode.E_ALREADY_SUBSCRIBED: 400,
    ApiErrorCode.E_STORAGE_MISSING: 400,
    ApiErrorCode.E_FILE_TOO_LARGE: 413,
    ApiErrorCode.E_STATE_CONFLICT: 409,
    ApiErrorCode.E_TICKET_EXPIRED: 410,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_STORE_UNAVAILABLE: 503,
    ApiErrorCode.E_PROVIDER_UNAVAILABLE: 503,
    ApiErrorCode.E_UPLOAD_FAILED: 502,
    ApiErrorCode.E_STORAGE_ERROR: 500,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Raised by services; rendered as the error envelope by the app's handler."""

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error (size, MIME, magic bytes, language code, title length)."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class ServiceUnavailableError(ApiError):
    """A downstream dependency (object store, provider) is unavailable after retries."""

    def __init__(
        self,
        code: ApiErrorCode = ApiErrorCode.E_STORE_UNAVAILABLE,
        message: str = "Service temporarily unavailable",
    ):
        super().__init__(code, message)


class WebhookUnverifiedError(ApiError):
    """Webhook signature missing or invalid."""

    def __init__(self, message: str = "Webhook signature verification failed"):
        super().__init__(ApiErrorCode.E_WEBHOOK_UNVERIFIED, message)


class StateConflict(Exception):
    """Attempted non-monotonic video status transition.

    Raised by the lifecycle transition function. Callers log and ignore it.
    """

    def __init__(self, current: str, attempted: str, reason: str | None = None):
        self.current = current
        self.attempted = attempted
        self.reason = reason
        message = f"Cannot transition video from {current} to {attempted}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
