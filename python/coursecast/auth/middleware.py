"""Bearer-token authentication for every non-public route.

The middleware resolves the caller to a ``Viewer`` (user id plus platform
role) before routing. Course-level access (owner, enrolled student) is
decided later by the services, which know which lesson is being touched.

Checks, in order:
1. public paths pass straight through (health, docs, the provider webhook,
   which carries its own signature)
2. in staging/prod, the BFF's internal secret header
3. the bearer token, verified by the configured TokenVerifier
4. the bootstrap callback, which upserts the users row and returns its role
"""

import hmac
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from coursecast.auth.verifier import TokenVerifier
from coursecast.db.models import UserRole
from coursecast.errors import ApiError, ApiErrorCode
from coursecast.logging import get_logger, user_id_var
from coursecast.responses import error_response

logger = get_logger(__name__)

INTERNAL_HEADER = "x-coursecast-internal"

PUBLIC_PATHS = frozenset({"/health", "/docs", "/redoc", "/openapi.json", "/webhooks/transcode"})


@dataclass(frozen=True)
class Viewer:
    """Authenticated caller: JWT subject and the role stored on the users row."""

    user_id: UUID
    role: UserRole = UserRole.student

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.admin


def _unauthenticated(reason: str, message: str = "Authentication required") -> ApiError:
    logger.warning("auth_failure", reason=reason)
    return ApiError(ApiErrorCode.E_UNAUTHENTICATED, message)


def bearer_token(authorization: str | None) -> str:
    """Token from an ``Authorization: Bearer <token>`` header value.

    Raises:
        ApiError: E_UNAUTHENTICATED when the header is missing or malformed.
    """
    if not authorization:
        raise _unauthenticated("missing_header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise _unauthenticated("invalid_header_format", "Invalid authorization header format")
    return token


class AuthMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        requires_internal_header: bool = False,
        internal_secret: str | None = None,
        bootstrap_callback: Callable[[UUID], UserRole] | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.requires_internal_header = requires_internal_header
        self.internal_secret = internal_secret
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next):
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        try:
            if self.requires_internal_header:
                self._check_internal_header(request.headers.get(INTERNAL_HEADER))
            claims = self.verifier.verify(bearer_token(request.headers.get("authorization")))
            viewer = self._resolve_viewer(UUID(claims["sub"]))
        except ApiError as e:
            return JSONResponse(
                status_code=e.status_code, content=error_response(e.code, e.message)
            )

        request.state.viewer = viewer
        user_id_var.set(str(viewer.user_id))
        return await call_next(request)

    def _check_internal_header(self, value: str | None) -> None:
        if value is None:
            logger.warning("auth_failure", reason="internal_header_missing")
            raise ApiError(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required")
        if not self.internal_secret:
            logger.error("internal_secret_not_configured")
            raise ApiError(ApiErrorCode.E_INTERNAL, "Internal server error")
        if not hmac.compare_digest(value.encode(), self.internal_secret.encode()):
            logger.warning("auth_failure", reason="internal_header_mismatch")
            raise ApiError(ApiErrorCode.E_INTERNAL_ONLY, "Internal API access required")

    def _resolve_viewer(self, user_id: UUID) -> Viewer:
        if self.bootstrap_callback is None:
            return Viewer(user_id=user_id)
        try:
            role = self.bootstrap_callback(user_id)
        except Exception:
            logger.exception("bootstrap_failed", user_id=str(user_id))
            raise ApiError(ApiErrorCode.E_INTERNAL, "Internal server error") from None
        return Viewer(user_id=user_id, role=role)


def get_viewer(request: Request) -> Viewer:
    """Dependency: the viewer attached by AuthMiddleware.

    Raises:
        ApiError: E_UNAUTHENTICATED on public paths or when auth did not run.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer

