"""Worker-side wiring shared by task modules.

Workers don't use FastAPI DI; tasks get their session, object store client
and transcoding adapter here.
"""

from collections.abc import Callable
from functools import lru_cache
from typing import Any

from sqlalchemy.orm import Session

from coursecast.config import get_settings
from coursecast.db.session import get_session_factory
from coursecast.logging import clear_task_context, configure_task_logging, get_logger
from coursecast.services.transcoding import TranscodingAdapter, build_transcoding_adapter

logger = get_logger(__name__)


@lru_cache
def get_worker_transcoder() -> TranscodingAdapter:
    """One adapter (and HTTP connection pool) per worker process."""
    return build_transcoding_adapter(get_settings())


def run_task(
    task: Any,
    name: str,
    work: Callable[[Session], dict],
    request_id: str | None = None,
) -> dict:
    """Run ``work`` with a fresh session and task logging context."""
    configure_task_logging(request_id=request_id, task_name=name, task_id=task.request.id)
    logger.info("task_started", task=name)

    db = get_session_factory()()
    try:
        result = work(db)
        logger.info("task_completed", task=name, **result)
        return result
    except Exception as e:
        db.rollback()
        logger.error("task_failed", task=name, error=str(e))
        raise
    finally:
        db.close()
        clear_task_context()
