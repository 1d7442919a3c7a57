"""Celery tasks for CourseCast.

Tasks are explicitly imported here to register them with Celery.
No autodiscovery - all tasks must be imported in this module.

Usage in worker:
    from coursecast.tasks import submit_stored_video_task

Usage in API (enqueue):
    from coursecast.tasks import submit_stored_video_task
    submit_stored_video_task.apply_async(
        args=[video_id],
        kwargs={"request_id": request_id},
        queue="transcode"
    )
"""

from coursecast.tasks.reconcile import (
    expire_upload_tickets_task,
    process_storage_deletions_task,
    prune_webhook_events_task,
    reconcile_ready_notifications_task,
    retry_pending_webhooks_task,
    sweep_orphan_objects_task,
    sync_provider_status_task,
)
from coursecast.tasks.submit_stored_video import submit_stored_video_task

__all__ = [
    "expire_upload_tickets_task",
    "process_storage_deletions_task",
    "prune_webhook_events_task",
    "reconcile_ready_notifications_task",
    "retry_pending_webhooks_task",
    "submit_stored_video_task",
    "sweep_orphan_objects_task",
    "sync_provider_status_task",
]
