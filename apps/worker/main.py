"""Celery worker and beat entrypoint.

    celery -A apps.worker.main:celery_app worker -Q transcode,default --loglevel=info
    celery -A apps.worker.main:celery_app beat --loglevel=info

Tasks are registered by the explicit imports below; there is no autodiscovery.
"""

from celery.signals import worker_process_init

from coursecast.celery import celery_app
from coursecast.logging import configure_logging, get_logger
from coursecast.tasks import (  # noqa: F401
    expire_upload_tickets_task,
    process_storage_deletions_task,
    prune_webhook_events_task,
    reconcile_ready_notifications_task,
    retry_pending_webhooks_task,
    submit_stored_video_task,
    sweep_orphan_objects_task,
    sync_provider_status_task,
)


@worker_process_init.connect
def setup_worker_logging(**kwargs):
    configure_logging()
    get_logger(__name__).info("celery_worker_started", queues=["transcode", "default"])


__all__ = ["celery_app"]
