"""structlog setup and the log context shared by the API and the workers.

Every log line is one JSON object. Besides the event name and the fields
passed at the call site, each line picks up whatever correlation ids are
bound in the current context:

    request_id, user_id, path, method   set per HTTP request
    task_name, task_id                  set per Celery task
    lesson_id, video_id                 bound once a handler knows the video

Query strings never reach ``path``: signed playback URLs must not end up in logs.

    logger = get_logger(__name__)
    logger.info("video_status_transition", from_status="processing", to_status="ready")
"""

import logging
import sys
from contextvars import ContextVar

import structlog

_FIELDS = (
    "request_id",
    "user_id",
    "path",
    "method",
    "task_name",
    "task_id",
    "lesson_id",
    "video_id",
)

_context: dict[str, ContextVar[str | None]] = {
    field: ContextVar(field, default=None) for field in _FIELDS
}

request_id_var = _context["request_id"]
user_id_var = _context["user_id"]

_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "celery.redirected")


def _reset(*fields: str) -> None:
    for field in fields:
        _context[field].set(None)


def add_request_context(logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy bound context into the event.

    Fields given explicitly at the call site are left alone.
    """
    for field, var in _context.items():
        value = var.get()
        if value:
            event_dict.setdefault(field, value)
    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        json_format: JSON lines when True, the coloured dev renderer otherwise.
        level: Root log level.
    """
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = (
        structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def get_request_id() -> str | None:
    return request_id_var.get()


def set_request_context(
    request_id: str | None,
    user_id: str | None = None,
    path: str | None = None,
    method: str | None = None,
) -> None:
    """Bind the request's correlation fields. ``None`` leaves a field as it was,
    except request_id, which is always overwritten."""
    request_id_var.set(request_id)
    for field, value in (("user_id", user_id), ("path", path), ("method", method)):
        if value is not None:
            _context[field].set(value)


def bind_video_context(lesson_id: int | str | None = None, video_id: object | None = None) -> None:
    if lesson_id is not None:
        _context["lesson_id"].set(str(lesson_id))
    if video_id is not None:
        _context["video_id"].set(str(video_id))


def clear_request_context() -> None:
    _reset("request_id", "user_id", "path", "method", "lesson_id", "video_id")


def configure_task_logging(
    request_id: str | None = None,
    task_name: str | None = None,
    task_id: str | None = None,
) -> None:
    """Bind task context at the top of a Celery task.

    ``request_id`` is the id of the API request that enqueued the task, so a
    webhook and the reconciliation it triggered share one correlation id.
    """
    request_id_var.set(request_id)
    _context["task_name"].set(task_name)
    _context["task_id"].set(task_id)


def clear_task_context() -> None:
    _reset("request_id", "user_id", "task_name", "task_id", "lesson_id", "video_id")
