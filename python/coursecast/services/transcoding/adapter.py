"""Abstract base class for transcoding adapters.

Rules:
- No retries inside adapters (call_provider() owns retry policy)
- No DB access
- No logging of request/response bodies
- Raw httpx errors bubble up for classification

The fake adapter lives here too so tests and local development can run the
full upload/webhook lifecycle without network access.
"""

from abc import ABC, abstractmethod
from itertools import count

from coursecast.services.transcoding.errors import ProviderError, ProviderNotConfigured
from coursecast.services.transcoding.types import AssetInfo, DirectUpload, UploadInfo
from coursecast.services.transcoding.webhooks import verify_signature


class TranscodingAdapter(ABC):
    """Abstract base class for transcoding providers."""

    name: str = "abstract"

    def __init__(self, webhook_secret: str | None = None):
        self._webhook_secret = webhook_secret

    @property
    def supports_direct_upload(self) -> bool:
        """Whether clients may PUT bytes straight to the provider."""
        return True

    @property
    def is_configured(self) -> bool:
        """Whether API calls can reach a provider at all."""
        return True

    @abstractmethod
    def create_direct_upload(
        self, *, cors_origin: str = "*", passthrough: str | None = None
    ) -> DirectUpload:
        """Create a one-shot provider upload URL."""
        ...

    @abstractmethod
    def submit(self, source_url: str, *, passthrough: str | None = None) -> str:
        """Ask the provider to ingest an existing object. Returns the asset id."""
        ...

    @abstractmethod
    def get_upload(self, upload_id: str) -> UploadInfo:
        """Fetch direct-upload state (status sync)."""
        ...

    @abstractmethod
    def get_asset(self, asset_id: str) -> AssetInfo:
        """Fetch asset state (status sync)."""
        ...

    @abstractmethod
    def delete_asset(self, asset_id: str) -> None:
        """Delete an asset. Missing assets are not an error."""
        ...

    @abstractmethod
    def playback_url(self, playback_id: str, *, ttl: int) -> str:
        """Adaptive (HLS) manifest URL for a playback id."""
        ...

    @abstractmethod
    def thumbnail_url(self, playback_id: str, *, ttl: int) -> str:
        """Poster image URL for a playback id."""
        ...

    def verify_webhook(self, raw_body: bytes, signature_header: str | None) -> bool:
        """Verify a webhook signature against the configured secret."""
        if not self._webhook_secret:
            return False
        return verify_signature(self._webhook_secret, raw_body, signature_header)

    @property
    def has_webhook_secret(self) -> bool:
        return bool(self._webhook_secret)


class UnavailableTranscodingAdapter(TranscodingAdapter):
    """Stand-in when no provider is configured: every call is refused."""

    name = "none"

    @property
    def supports_direct_upload(self) -> bool:
        return False

    @property
    def is_configured(self) -> bool:
        return False

    def create_direct_upload(self, *, cors_origin="*", passthrough=None) -> DirectUpload:
        raise ProviderNotConfigured()

    def submit(self, source_url, *, passthrough=None) -> str:
        raise ProviderNotConfigured()

    def get_upload(self, upload_id) -> UploadInfo:
        raise ProviderNotConfigured()

    def get_asset(self, asset_id) -> AssetInfo:
        raise ProviderNotConfigured()

    def delete_asset(self, asset_id) -> None:
        raise ProviderNotConfigured()

    def playback_url(self, playback_id, *, ttl) -> str:
        raise ProviderNotConfigured()

    def thumbnail_url(self, playback_id, *, ttl) -> str:
        raise ProviderNotConfigured()


class FakeTranscodingAdapter(TranscodingAdapter):
    """In-memory provider for tests.

    Uploads and assets are plain dicts the test can advance with
    mark_upload_complete() / mark_asset_ready() / mark_asset_errored().
    """

    name = "fake"

    def __init__(
        self,
        webhook_secret: str | None = "test-webhook-secret",
        direct_upload: bool = True,
        stream_base_url: str = "https://stream.example.test",
    ):
        super().__init__(webhook_secret)
        self._direct_upload = direct_upload
        self._stream_base_url = stream_base_url.rstrip("/")
        self._ids = count(1)
        self.uploads: dict[str, UploadInfo] = {}
        self.assets: dict[str, AssetInfo] = {}
        self.deleted_assets: list[str] = []
        self.submitted: list[str] = []
        self._failures: list[ProviderError] = []

    @property
    def supports_direct_upload(self) -> bool:
        return self._direct_upload

    def fail_next(self, *errors: ProviderError) -> None:
        """Queue errors raised by the next provider calls (test helper)."""
        self._failures.extend(errors)

    def _maybe_fail(self) -> None:
        if self._failures:
            raise self._failures.pop(0)

    def create_direct_upload(self, *, cors_origin="*", passthrough=None) -> DirectUpload:
        self._maybe_fail()
        upload_id = f"up_{next(self._ids)}"
        self.uploads[upload_id] = UploadInfo(upload_id=upload_id, status="waiting")
        return DirectUpload(
            upload_url=f"https://uploads.example.test/{upload_id}",
            upload_id=upload_id,
            expires_in=3600,
        )

    def submit(self, source_url, *, passthrough=None) -> str:
        self._maybe_fail()
        asset_id = f"as_{next(self._ids)}"
        self.submitted.append(source_url)
        self.assets[asset_id] = AssetInfo(asset_id=asset_id, status="preparing")
        return asset_id

    def get_upload(self, upload_id) -> UploadInfo:
        self._maybe_fail()
        if upload_id not in self.uploads:
            raise ProviderError(f"Upload {upload_id} not found", transient=False, status_code=404)
        return self.uploads[upload_id]

    def get_asset(self, asset_id) -> AssetInfo:
        self._maybe_fail()
        if asset_id not in self.assets:
            raise ProviderError(f"Asset {asset_id} not found", transient=False, status_code=404)
        return self.assets[asset_id]

    def delete_asset(self, asset_id) -> None:
        self._maybe_fail()
        self.assets.pop(asset_id, None)
        self.deleted_assets.append(asset_id)

    def playback_url(self, playback_id, *, ttl) -> str:
        return f"{self._stream_base_url}/{playback_id}.m3u8"

    def thumbnail_url(self, playback_id, *, ttl) -> str:
        return f"{self._stream_base_url}/{playback_id}/thumbnail.jpg"

    # Test helper methods

    def mark_upload_complete(self, upload_id: str, asset_id: str | None = None) -> str:
        """Simulate the client PUT finishing and the provider creating an asset."""
        asset_id = asset_id or f"as_{next(self._ids)}"
        self.uploads[upload_id] = UploadInfo(
            upload_id=upload_id, status="asset_created", asset_id=asset_id
        )
        self.assets.setdefault(
            asset_id, AssetInfo(asset_id=asset_id, status="preparing", upload_id=upload_id)
        )
        return asset_id

    def mark_asset_ready(
        self, asset_id: str, playback_id: str, max_stored_resolution: str = "HD"
    ) -> None:
        previous = self.assets.get(asset_id)
        self.assets[asset_id] = AssetInfo(
            asset_id=asset_id,
            status="ready",
            playback_id=playback_id,
            upload_id=previous.upload_id if previous else None,
            max_stored_resolution=max_stored_resolution,
        )

    def mark_asset_errored(self, asset_id: str, error: str) -> None:
        previous = self.assets.get(asset_id)
        self.assets[asset_id] = AssetInfo(
            asset_id=asset_id,
            status="errored",
            upload_id=previous.upload_id if previous else None,
            error=error,
        )
