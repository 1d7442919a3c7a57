"""Transcoding provider webhook route.

Public path: the provider authenticates with its signature header, not a
bearer token. The raw body is needed for signature verification, so the
handler is async and runs the sync service in the threadpool.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from coursecast.api.deps import get_db, get_transcoder
from coursecast.responses import success_response
from coursecast.services import webhooks as webhooks_service
from coursecast.services.transcoding import TranscodingAdapter
from coursecast.services.transcoding.webhooks import SIGNATURE_HEADER

router = APIRouter()


@router.post("/webhooks/transcode")
async def transcode_webhook(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    transcoder: Annotated[TranscodingAdapter, Depends(get_transcoder)],
) -> dict:
    """Acknowledge a provider event with 200 once it is recorded.

    Duplicates, conflicts and unknown event types are still acknowledged
    so the provider stops retrying; only a bad signature is rejected.
    """
    raw_body = await request.body()
    result = await run_in_threadpool(
        webhooks_service.handle_webhook,
        db,
        raw_body,
        request.headers.get(SIGNATURE_HEADER),
        transcoder=transcoder,
    )
    return success_response(result.to_dict())
