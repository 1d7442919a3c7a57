"""Sessions and units of work.

Routes get a request-scoped session from ``get_db``. Celery tasks and the
auth bootstrap open their own sessions from ``get_session_factory()``;
tests install a factory bound to their database with
``set_session_factory``.

Lesson and video mutations run through ``run_in_transaction`` so the row
locks they take are released by a single commit or rollback.
"""

from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from coursecast.db.engine import get_engine
from coursecast.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_factory: sessionmaker[Session] | None = None


def create_session_factory(engine: Engine | None = None) -> sessionmaker[Session]:
    # expire_on_commit=False: services return ORM rows after committing.
    return sessionmaker(
        bind=engine if engine is not None else get_engine(),
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> sessionmaker[Session]:
    global _factory
    if _factory is None:
        _factory = create_session_factory()
    return _factory


def set_session_factory(factory: sessionmaker[Session] | None) -> None:
    """Install (or with None, drop) the process-wide session factory."""
    global _factory
    _factory = factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency: one session per request, closed afterwards."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Generator[None, None, None]:
    """Commit when the block finishes, roll back if it raises."""
    try:
        yield
        db.commit()
    except Exception:
        db.rollback()
        raise


def run_in_transaction(db: Session, work: Callable[[], T], *, retries: int = 1) -> T:
    """Run ``work`` as one transaction, retrying driver-level failures.

    A dropped connection, serialization failure or deadlock on the lesson
    row lock is retried up to ``retries`` times. Domain errors (ApiError,
    StateConflict) propagate after rollback.
    """
    attempt = 0
    while True:
        try:
            with transaction(db):
                return work()
        except OperationalError as e:
            attempt += 1
            if attempt > retries:
                raise
            logger.warning("transaction_retry", attempt=attempt, error=str(e.orig or e))
