"""Celery task handing a store-hosted upload to the transcoding provider.

Enqueued after an upload is attached in ``processing`` (only when
TRANSCODE_STORED_UPLOADS is on). Idempotent: a video that already has a
provider asset, or has left ``processing``, is skipped. max_retries=0;
videos the task never reaches are picked up by provider status sync.
"""

from uuid import UUID

from coursecast.celery import celery_app
from coursecast.services.upload import submit_stored_video
from coursecast.storage import get_storage_client
from coursecast.tasks._runtime import get_worker_transcoder, run_task


@celery_app.task(bind=True, max_retries=0, name="submit_stored_video")
def submit_stored_video_task(self, video_id: str, request_id: str | None = None) -> dict:
    """Submit one stored video for transcoding.

    Args:
        video_id: UUID of the video row.
        request_id: Optional request ID for log correlation.
    """

    def work(db) -> dict:
        asset_id = submit_stored_video(
            db,
            UUID(video_id),
            storage=get_storage_client(),
            transcoder=get_worker_transcoder(),
        )
        return {"video_id": video_id, "asset_id": asset_id}

    return run_task(self, "submit_stored_video", work, request_id)
