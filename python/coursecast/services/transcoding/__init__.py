"""Transcoding adapter package.

Provides:
- TranscodingAdapter ABC with Mux, fake, and unavailable implementations
- Webhook signature verification and event normalization
- Provider error classification and retry
- build_transcoding_adapter() factory driven by settings
"""

import httpx

from coursecast.config import Settings
from coursecast.services.transcoding.adapter import (
    FakeTranscodingAdapter,
    TranscodingAdapter,
    UnavailableTranscodingAdapter,
)
from coursecast.services.transcoding.errors import (
    ProviderError,
    ProviderNotConfigured,
    call_provider,
    classify_provider_error,
)
from coursecast.services.transcoding.mux_adapter import MuxAdapter
from coursecast.services.transcoding.types import (
    AssetInfo,
    DirectUpload,
    TranscodeEvent,
    TranscodeEventKind,
    UploadInfo,
)
from coursecast.services.transcoding.webhooks import parse_event, sign_payload, verify_signature


def build_transcoding_adapter(
    settings: Settings, client: httpx.Client | None = None
) -> TranscodingAdapter:
    """Create the adapter for the configured provider.

    Returns UnavailableTranscodingAdapter when credentials are missing, which
    sends uploads down the store-direct path. The webhook secret is still
    honored so late webhooks for existing assets verify.
    """
    if not settings.provider_enabled:
        return UnavailableTranscodingAdapter(settings.provider_webhook_secret)

    return MuxAdapter(
        client or httpx.Client(timeout=settings.provider_timeout_s),
        token_id=settings.provider_token_id,  # type: ignore[arg-type]
        token_secret=settings.provider_token_secret,  # type: ignore[arg-type]
        webhook_secret=settings.provider_webhook_secret,
        api_url=settings.provider_api_url,
        stream_base_url=settings.provider_stream_base_url,
        image_base_url=settings.provider_image_base_url,
        playback_policy=settings.provider_playback_policy,
        signing_key_id=settings.provider_signing_key_id,
        signing_key_private=settings.provider_signing_key_private,
        timeout_s=settings.provider_timeout_s,
    )


__all__ = [
    "AssetInfo",
    "DirectUpload",
    "FakeTranscodingAdapter",
    "MuxAdapter",
    "ProviderError",
    "ProviderNotConfigured",
    "TranscodeEvent",
    "TranscodeEventKind",
    "TranscodingAdapter",
    "UnavailableTranscodingAdapter",
    "UploadInfo",
    "build_transcoding_adapter",
    "call_provider",
    "classify_provider_error",
    "parse_event",
    "sign_payload",
    "verify_signature",
]
