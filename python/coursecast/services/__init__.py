"""Business logic services.

This module contains service-layer functions that implement business logic.
Services are called by route handlers and tasks and orchestrate database,
object store and provider operations.
"""

from coursecast.services.bootstrap import ensure_user
from coursecast.services.lessons import (
    attach_video,
    create_lesson,
    delete_lesson_video,
    get_lesson_metadata,
    replace_video,
    set_video_status,
)
from coursecast.services.playback import get_lesson_playback

__all__ = [
    "attach_video",
    "create_lesson",
    "delete_lesson_video",
    "ensure_user",
    "get_lesson_metadata",
    "get_lesson_playback",
    "replace_video",
    "set_video_status",
]
