"""Periodic reconciliation tasks (Celery beat).

Thin wrappers: each opens a session, runs one idempotent pass from the
service layer, and returns its counts. Schedules live in coursecast.celery.
"""

from coursecast.celery import celery_app
from coursecast.services import notifications, reconciliation, webhooks
from coursecast.storage import get_storage_client
from coursecast.tasks._runtime import get_worker_transcoder, run_task


@celery_app.task(bind=True, max_retries=0, name="sweep_orphan_objects")
def sweep_orphan_objects_task(self, request_id: str | None = None) -> dict:
    return run_task(
        self,
        "sweep_orphan_objects",
        lambda db: {"deleted": reconciliation.sweep_orphan_objects(db, get_storage_client())},
        request_id,
    )


@celery_app.task(bind=True, max_retries=0, name="process_storage_deletions")
def process_storage_deletions_task(self, request_id: str | None = None) -> dict:
    return run_task(
        self,
        "process_storage_deletions",
        lambda db: reconciliation.process_storage_deletions(
            db, get_storage_client(), get_worker_transcoder()
        ),
        request_id,
    )


@celery_app.task(bind=True, max_retries=0, name="reconcile_ready_notifications")
def reconcile_ready_notifications_task(self, request_id: str | None = None) -> dict:
    return run_task(
        self,
        "reconcile_ready_notifications",
        lambda db: {"delivered": notifications.reconcile_ready_notifications(db)},
        request_id,
    )


@celery_app.task(bind=True, max_retries=0, name="retry_pending_webhooks")
def retry_pending_webhooks_task(self, request_id: str | None = None) -> dict:
    return run_task(self, "retry_pending_webhooks", webhooks.retry_pending_webhooks, request_id)


@celery_app.task(bind=True, max_retries=0, name="prune_webhook_events")
def prune_webhook_events_task(self, request_id: str | None = None) -> dict:
    return run_task(
        self,
        "prune_webhook_events",
        lambda db: {"pruned": webhooks.prune_webhook_events(db)},
        request_id,
    )


@celery_app.task(bind=True, max_retries=0, name="sync_provider_status")
def sync_provider_status_task(self, request_id: str | None = None) -> dict:
    return run_task(
        self,
        "sync_provider_status",
        lambda db: {"changed": reconciliation.sync_provider_status(db, get_worker_transcoder())},
        request_id,
    )


@celery_app.task(bind=True, max_retries=0, name="expire_upload_tickets")
def expire_upload_tickets_task(self, request_id: str | None = None) -> dict:
    return run_task(
        self,
        "expire_upload_tickets",
        lambda db: {"expired": reconciliation.expire_upload_tickets(db)},
        request_id,
    )
