"""The Celery app shared by the API (enqueue only) and the worker.

Provider submissions go to the ``transcode`` queue so a slow provider cannot
starve the reconciliation passes that beat schedules on ``default``.
"""

from celery import Celery

from coursecast.config import get_settings

MINUTE = 60.0
HOUR = 60 * MINUTE

# task name -> interval in seconds
RECONCILIATION_SCHEDULE = {
    "process_storage_deletions": MINUTE,
    "retry_pending_webhooks": MINUTE,
    "reconcile_ready_notifications": 5 * MINUTE,
    "sync_provider_status": 10 * MINUTE,
    "expire_upload_tickets": 10 * MINUTE,
    "sweep_orphan_objects": HOUR,
    "prune_webhook_events": HOUR,
}

settings = get_settings()

celery_app = Celery("coursecast")
celery_app.conf.update(
    broker_url=settings.effective_celery_broker_url,
    result_backend=settings.effective_celery_result_backend,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_default_queue="default",
    task_routes={"submit_stored_video": {"queue": "transcode"}},
    beat_schedule={
        name.replace("_", "-"): {"task": name, "schedule": interval}
        for name, interval in RECONCILIATION_SCHEDULE.items()
    },
)
