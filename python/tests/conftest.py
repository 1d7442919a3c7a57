"""Pytest configuration and fixtures for CourseCast tests.

Test isolation strategy:
- Every test gets its own SQLite database file with the ORM schema created
- The app and the test share one session factory, so rows committed by
  factories are visible to requests and vice versa
- Object store and transcoding provider are in-memory fakes injected into
  create_app(); nothing talks to the network
- Auth tests use authenticated_client with locally signed test JWTs
"""

from collections.abc import Generator
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from coursecast.app import add_request_id_middleware, create_app
from coursecast.client.config import clear_client_settings_cache
from coursecast.auth.middleware import AuthMiddleware
from coursecast.config import clear_settings_cache
from coursecast.db.engine import create_db_engine
from coursecast.db.models import Base, UserRole
from coursecast.db.session import create_session_factory, set_session_factory
from coursecast.services.bootstrap import ensure_user
from coursecast.services.transcoding import FakeTranscodingAdapter
from coursecast.storage import FakeStorageClient
from tests.helpers import WEBHOOK_SECRET, create_test_user_id
from tests.support.token_verifier import MockJwtVerifier


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'coursecast_test.db'}"


@pytest.fixture(autouse=True)
def test_env(monkeypatch, database_url: str) -> None:
    """Minimal environment for Settings in the test environment."""
    monkeypatch.setenv("COURSECAST_ENV", "test")
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("AUTH_JWKS_URL", "https://auth.example.test/.well-known/jwks.json")
    monkeypatch.setenv("AUTH_ISSUER", "test-issuer")
    monkeypatch.setenv("AUTH_AUDIENCES", "test-audience")
    for name in (
        "OBJECT_STORE_URL",
        "OBJECT_STORE_SERVICE_KEY",
        "PROVIDER_TOKEN_ID",
        "PROVIDER_TOKEN_SECRET",
        "PROVIDER_WEBHOOK_SECRET",
        "TRANSCODE_STORED_UPLOADS",
        "STORAGE_TEST_PREFIX",
        "DRAFT_AUTOSAVE_INTERVAL_MS",
        "DRAFT_RETENTION_DAYS",
        "DRAFT_MAX_BYTES",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the server and client settings caches before and after each test."""
    clear_settings_cache()
    clear_client_settings_cache()
    yield
    clear_settings_cache()
    clear_client_settings_cache()


@pytest.fixture
def set_env(monkeypatch):
    """Set an environment variable and drop the cached Settings so it takes effect."""

    def _set(name: str, value: str) -> None:
        monkeypatch.setenv(name, value)
        clear_settings_cache()

    return _set


@pytest.fixture(autouse=True)
def no_store_backoff(monkeypatch):
    """Store and provider retries run without sleeping."""
    monkeypatch.setattr("coursecast.storage.retry.time.sleep", lambda _s: None)


@pytest.fixture
def engine(database_url: str) -> Generator[Engine, None, None]:
    engine = create_db_engine(database_url)
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> Generator[sessionmaker[Session], None, None]:
    """Session factory shared by the app, tasks and the test body."""
    factory = create_session_factory(engine)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_storage() -> FakeStorageClient:
    return FakeStorageClient()


@pytest.fixture
def fake_transcoder() -> FakeTranscodingAdapter:
    return FakeTranscodingAdapter(webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def client(session_factory, fake_storage, fake_transcoder) -> Generator[TestClient, None, None]:
    """Client without auth middleware, for public endpoints."""
    app = create_app(
        skip_auth_middleware=True, storage_client=fake_storage, transcoder=fake_transcoder
    )
    add_request_id_middleware(app, log_requests=False)
    with TestClient(app) as client:
        yield client


@pytest.fixture
def authenticated_app(session_factory, fake_storage, fake_transcoder):
    """App with auth middleware using the test verifier and test database."""

    def bootstrap_callback(user_id: UUID) -> UserRole:
        db = session_factory()
        try:
            return ensure_user(db, user_id)
        finally:
            db.close()

    app = create_app(
        skip_auth_middleware=True, storage_client=fake_storage, transcoder=fake_transcoder
    )
    app.add_middleware(
        AuthMiddleware,
        verifier=MockJwtVerifier(),
        requires_internal_header=False,
        internal_secret=None,
        bootstrap_callback=bootstrap_callback,
    )
    # Added last so it runs first (outermost)
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def authenticated_client(authenticated_app) -> Generator[TestClient, None, None]:
    """Client with auth middleware. Use auth_headers() to mint tokens."""
    with TestClient(authenticated_app) as client:
        yield client


@pytest.fixture
def test_user_id() -> UUID:
    return create_test_user_id()
