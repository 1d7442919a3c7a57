"""Mux Video adapter.

API reference:
- POST   /video/v1/uploads          direct upload (returns url + id)
- GET    /video/v1/uploads/{id}     upload status, asset_id once created
- POST   /video/v1/assets           ingest from a URL
- GET    /video/v1/assets/{id}      asset status, playback ids, errors
- DELETE /video/v1/assets/{id}

Auth is HTTP basic with the access token id/secret. Signed playback uses an
RS256 JWT (sub=playback id, aud="v" for video, "t" for thumbnails) signed with
a base64-encoded PEM signing key.
"""

import base64
import time

import httpx
import jwt

from coursecast.config import PlaybackPolicy
from coursecast.services.transcoding.adapter import TranscodingAdapter
from coursecast.services.transcoding.errors import ProviderError
from coursecast.services.transcoding.types import AssetInfo, DirectUpload, UploadInfo

DEFAULT_TIMEOUT_S = 30.0
DIRECT_UPLOAD_TIMEOUT_S = 3600


def _decode_signing_key(value: str) -> bytes:
    # Keys are distributed base64-encoded; raw PEM is accepted too.
    if value.lstrip().startswith("-----BEGIN"):
        return value.encode()
    return base64.b64decode(value)


class MuxAdapter(TranscodingAdapter):
    """Adapter for the Mux Video REST API."""

    name = "mux"

    def __init__(
        self,
        client: httpx.Client,
        *,
        token_id: str,
        token_secret: str,
        webhook_secret: str | None = None,
        api_url: str = "https://api.mux.com",
        stream_base_url: str = "https://stream.mux.com",
        image_base_url: str = "https://image.mux.com",
        playback_policy: PlaybackPolicy = PlaybackPolicy.PUBLIC,
        signing_key_id: str | None = None,
        signing_key_private: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
    ):
        """Initialize adapter with a shared HTTP client.

        Args:
            client: Shared httpx.Client for connection pooling.
            token_id: Access token id (basic auth user).
            token_secret: Access token secret (basic auth password).
            webhook_secret: Webhook signing secret.
            playback_policy: public or signed playback for new assets.
            signing_key_id / signing_key_private: Required for signed playback.
        """
        super().__init__(webhook_secret)
        self._client = client
        self._auth = httpx.BasicAuth(token_id, token_secret)
        self._api_url = api_url.rstrip("/")
        self._stream_base_url = stream_base_url.rstrip("/")
        self._image_base_url = image_base_url.rstrip("/")
        self._policy = playback_policy
        self._signing_key_id = signing_key_id
        self._signing_key = (
            _decode_signing_key(signing_key_private) if signing_key_private else None
        )
        self._timeout = timeout_s

    def _request(self, method: str, path: str, **kwargs) -> dict:
        response = self._client.request(
            method,
            f"{self._api_url}{path}",
            auth=self._auth,
            timeout=self._timeout,
            **kwargs,
        )
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return {}
        return response.json().get("data") or {}

    def create_direct_upload(self, *, cors_origin="*", passthrough=None) -> DirectUpload:
        settings = {"playback_policy": [self._policy.value]}
        if passthrough:
            settings["passthrough"] = passthrough
        data = self._request(
            "POST",
            "/video/v1/uploads",
            json={
                "cors_origin": cors_origin,
                "new_asset_settings": settings,
                "timeout": DIRECT_UPLOAD_TIMEOUT_S,
            },
        )
        if not data.get("url") or not data.get("id"):
            raise ProviderError("Direct upload response missing url/id", transient=False)
        return DirectUpload(
            upload_url=data["url"],
            upload_id=data["id"],
            expires_in=int(data.get("timeout") or DIRECT_UPLOAD_TIMEOUT_S),
        )

    def submit(self, source_url, *, passthrough=None) -> str:
        body = {"input": [{"url": source_url}], "playback_policy": [self._policy.value]}
        if passthrough:
            body["passthrough"] = passthrough
        data = self._request("POST", "/video/v1/assets", json=body)
        if not data.get("id"):
            raise ProviderError("Asset create response missing id", transient=False)
        return data["id"]

    def get_upload(self, upload_id) -> UploadInfo:
        data = self._request("GET", f"/video/v1/uploads/{upload_id}")
        error = data.get("error") or {}
        return UploadInfo(
            upload_id=data.get("id", upload_id),
            status=data.get("status", "unknown"),
            asset_id=data.get("asset_id"),
            error=error.get("message") if isinstance(error, dict) else None,
        )

    def get_asset(self, asset_id) -> AssetInfo:
        data = self._request("GET", f"/video/v1/assets/{asset_id}")
        playback_id = next(
            (p["id"] for p in data.get("playback_ids") or [] if p.get("id")), None
        )
        errors = data.get("errors") or {}
        error = None
        if errors:
            messages = errors.get("messages") or []
            error = "; ".join(messages) if messages else errors.get("type", "unknown_error")
        duration = data.get("duration")
        return AssetInfo(
            asset_id=data.get("id", asset_id),
            status=data.get("status", "unknown"),
            playback_id=playback_id,
            upload_id=data.get("upload_id"),
            max_stored_resolution=data.get("max_stored_resolution"),
            duration_s=float(duration) if duration is not None else None,
            error=error,
        )

    def delete_asset(self, asset_id) -> None:
        try:
            self._request("DELETE", f"/video/v1/assets/{asset_id}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code != 404:
                raise

    def _playback_token(self, playback_id: str, audience: str, ttl: int) -> str:
        if self._signing_key is None or self._signing_key_id is None:
            raise ProviderError("Signed playback requires a signing key", transient=False)
        claims = {"sub": playback_id, "aud": audience, "exp": int(time.time()) + ttl}
        return jwt.encode(
            claims,
            self._signing_key,
            algorithm="RS256",
            headers={"kid": self._signing_key_id},
        )

    def playback_url(self, playback_id, *, ttl) -> str:
        url = f"{self._stream_base_url}/{playback_id}.m3u8"
        if self._policy == PlaybackPolicy.SIGNED:
            url = f"{url}?token={self._playback_token(playback_id, 'v', ttl)}"
        return url

    def thumbnail_url(self, playback_id, *, ttl) -> str:
        url = f"{self._image_base_url}/{playback_id}/thumbnail.jpg"
        if self._policy == PlaybackPolicy.SIGNED:
            url = f"{url}?token={self._playback_token(playback_id, 't', ttl)}"
        return url
