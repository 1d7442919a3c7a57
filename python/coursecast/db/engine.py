"""Engine construction.

Deployments point DATABASE_URL at PostgreSQL through psycopg 3
(``postgresql+psycopg://...``). The test suite runs the same models on
SQLite; an in-memory SQLite URL is pinned to one connection, otherwise
each pooled connection would open its own empty database.
"""

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from coursecast.config import get_settings


def _is_in_memory_sqlite(url: str) -> bool:
    return ":memory:" in url or url.rstrip("/") in ("sqlite:", "sqlite+pysqlite:")


def create_db_engine(database_url: str | None = None) -> Engine:
    url = database_url or get_settings().database_url

    if not url.startswith("sqlite"):
        # Webhook and reconciliation workers hold connections across idle periods.
        return create_engine(url, pool_pre_ping=True)

    options: dict = {"connect_args": {"check_same_thread": False}}
    if _is_in_memory_sqlite(url):
        options["poolclass"] = StaticPool
    return create_engine(url, **options)


@lru_cache
def get_engine() -> Engine:
    """Process-wide engine built from settings on first use."""
    return create_db_engine()
