"""FastAPI application factory.

Middleware runs in reverse order of registration. add_request_id_middleware()
is called last so request ids are assigned before auth can reject a request.

The object store client and the transcoding adapter are gateways shared by
every request. lifespan() builds them from settings unless create_app() was
handed ready-made ones (tests pass in-memory fakes), and routes reach them
through coursecast.api.deps.
"""

from contextlib import asynccontextmanager
from uuid import UUID

import httpx
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from coursecast.api.routes import create_api_router
from coursecast.auth.middleware import AuthMiddleware
from coursecast.auth.verifier import JwksVerifier
from coursecast.config import Settings, get_settings
from coursecast.db.models import UserRole
from coursecast.db.session import get_session_factory
from coursecast.errors import ApiError
from coursecast.logging import configure_logging, get_logger
from coursecast.middleware.request_id import RequestIDMiddleware
from coursecast.responses import (
    api_error_handler,
    http_exception_handler,
    reject_malformed_json,
    unhandled_exception_handler,
    validation_error_handler,
)
from coursecast.services.bootstrap import ensure_user
from coursecast.services.transcoding import TranscodingAdapter, build_transcoding_adapter
from coursecast.storage import StorageClientBase, get_storage_client

configure_logging()

logger = get_logger(__name__)


def ensure_user_role(user_id: UUID) -> UserRole:
    """Auth bootstrap: upsert the users row in a short-lived session, return the role."""
    db = get_session_factory()()
    try:
        return ensure_user(db, user_id)
    finally:
        db.close()


def create_token_verifier(settings: Settings) -> JwksVerifier:
    return JwksVerifier(
        jwks_url=settings.auth_jwks_url,  # type: ignore[arg-type]
        issuer=settings.normalized_issuer,  # type: ignore[arg-type]
        audiences=settings.audience_list,
    )


def _provider_http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(settings.provider_timeout_s, connect=10.0),
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    owned_client = None

    if app.state.storage_client is None:
        app.state.storage_client = get_storage_client()
    if app.state.transcoder is None:
        owned_client = _provider_http_client(settings)
        app.state.transcoder = build_transcoding_adapter(settings, owned_client)

    logger.info(
        "gateways_initialized",
        storage=type(app.state.storage_client).__name__,
        transcoder=app.state.transcoder.name,
        direct_upload=app.state.transcoder.supports_direct_upload,
    )
    try:
        yield
    finally:
        if owned_client is not None:
            owned_client.close()
            logger.info("provider_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
    storage_client: StorageClientBase | None = None,
    transcoder: TranscodingAdapter | None = None,
) -> FastAPI:
    """Build the CourseCast API.

    Args:
        skip_auth_middleware: Leave auth off (tests add their own AuthMiddleware).
        token_verifier: Replaces the JWKS verifier.
        storage_client: Object store gateway to use instead of the configured one.
        transcoder: Transcoding adapter to use instead of the configured provider.
    """
    settings = get_settings()

    app = FastAPI(
        title="CourseCast API",
        description="Lesson video ingestion, processing and playback",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.storage_client = storage_client
    app.state.transcoder = transcoder

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
    app.middleware("http")(reject_malformed_json)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=token_verifier or create_token_verifier(settings),
            requires_internal_header=settings.requires_internal_header,
            internal_secret=settings.coursecast_internal_secret,
            bootstrap_callback=ensure_user_role,
        )
        logger.info(
            "auth_middleware_enabled",
            env=settings.coursecast_env.value,
            internal_header_required=settings.requires_internal_header,
        )

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Register X-Request-ID handling; call after every other middleware."""
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
