"""Object store gateway.

Provides a clean interface for blob operations with:
- Server-side puts (proxied uploads, subtitles)
- Signed upload URLs (for direct client PUTs)
- Signed download URLs (for playback and subtitle redirects)
- Existence checks and prefix listing (orphan sweep)
- Object deletion

The production client talks to a Supabase-compatible storage REST API over
httpx. Every method validates the key against its purpose prefix before any
I/O happens.

Failure classes:
- StoreUnavailable: network error, timeout, 5xx, 429 (transient, retry)
- StoreAccessDenied: 401/403 (terminal)
"""

import os
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import BinaryIO
from urllib.parse import quote, urlsplit, urlunsplit
from uuid import uuid4

import httpx

from coursecast.storage.paths import InvalidStorageKey, validate_key

DEFAULT_TTL_SECONDS = 3600
HTTP_TIMEOUT_S = 30.0
LIST_PAGE_SIZE = 1000


@dataclass(frozen=True)
class ObjectMetadata:
    """Storage object metadata.

    Advisory only - do not trust for security validation.
    """

    key: str
    content_type: str
    size_bytes: int
    last_modified: datetime | None = None


@dataclass(frozen=True)
class PresignedPut:
    """A time-limited URL the client may PUT bytes to."""

    key: str
    url: str
    expires_in: int
    headers: dict[str, str] = field(default_factory=dict)


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StoreUnavailable(StorageError):
    """Transient storage failure. Safe to retry."""

    def __init__(self, message: str):
        super().__init__(message, code="E_STORE_UNAVAILABLE")


class StoreAccessDenied(StorageError):
    """Credentials rejected by the store. Not retryable."""

    def __init__(self, message: str):
        super().__init__(message, code="E_STORE_ACCESS_DENIED")


class StorageClientBase(ABC):
    """Abstract base class for object store gateway implementations."""

    @property
    def supports_presigned_upload(self) -> bool:
        """Whether clients may PUT straight to the store with presign_put()."""
        return True

    @abstractmethod
    def put(self, key: str, data: bytes | BinaryIO, content_type: str) -> None:
        """Store bytes (or a readable file) under key, replacing any existing object.

        Raises:
            InvalidStorageKey: If key escapes its purpose prefix.
            StoreUnavailable / StoreAccessDenied / StorageError.
        """
        ...

    @abstractmethod
    def presign_put(
        self, key: str, content_type: str, ttl: int = DEFAULT_TTL_SECONDS
    ) -> PresignedPut:
        """Create a signed URL for a direct client upload."""
        ...

    @abstractmethod
    def presign_get(self, key: str, ttl: int = DEFAULT_TTL_SECONDS) -> str:
        """Create a signed download URL."""
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing object is not an error."""
        ...

    @abstractmethod
    def head(self, key: str) -> ObjectMetadata | None:
        """Return metadata if the object exists, None otherwise."""
        ...

    @abstractmethod
    def read_prefix(self, key: str, length: int) -> bytes:
        """Read the first ``length`` bytes of an object (magic-byte checks)."""
        ...

    @abstractmethod
    def list_objects(self, prefix: str) -> Iterator[ObjectMetadata]:
        """Yield every object whose key starts with ``prefix`` (recursive)."""
        ...

    def exists(self, key: str) -> bool:
        """Check whether an object exists."""
        return self.head(key) is not None


def _raise_for_status(response: httpx.Response, action: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status in (401, 403):
        raise StoreAccessDenied(f"{action} denied: {status}")
    if status == 429 or status >= 500:
        raise StoreUnavailable(f"{action} failed: {status}")
    raise StorageError(f"{action} failed: {status} {response.text[:200]}")


class StorageClient(StorageClientBase):
    """Production object store client.

    Uses httpx for HTTP operations against the storage REST API.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "lms-media",
        public_cdn: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize the storage client.

        Args:
            base_url: Storage project URL (e.g., https://xxx.supabase.co).
            service_key: Service role key.
            bucket: Storage bucket name.
            public_cdn: Optional CDN host that signed GET URLs are rewritten onto.
            transport: Optional httpx transport (tests).
        """
        self._base_url = base_url.rstrip("/")
        self._bucket = bucket
        self._storage_url = f"{self._base_url}/storage/v1"
        self._public_cdn = public_cdn.rstrip("/") if public_cdn else None
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=HTTP_TIMEOUT_S, transport=self._transport)

    def _object_url(self, key: str) -> str:
        return f"{self._storage_url}/object/{self._bucket}/{quote(key)}"

    def _send(
        self,
        method: str,
        url: str,
        action: str,
        headers: dict[str, str] | None = None,
        **kwargs,
    ) -> httpx.Response:
        try:
            with self._client() as client:
                response = client.request(
                    method, url, headers={**self._headers, **(headers or {})}, **kwargs
                )
        except httpx.TimeoutException as e:
            raise StoreUnavailable(f"{action} timed out") from e
        except httpx.TransportError as e:
            raise StoreUnavailable(f"{action} network error: {e}") from e
        return response

    def _absolute(self, path: str) -> str:
        # The API may return relative paths, with or without /storage/v1.
        if path.startswith(("http://", "https://")):
            return path
        if path.startswith("/storage/"):
            return f"{self._base_url}{path}"
        return f"{self._storage_url}/{path.lstrip('/')}"

    def put(self, key: str, data: bytes | BinaryIO, content_type: str) -> None:
        validate_key(key)
        response = self._send(
            "POST",
            self._object_url(key),
            "Storage put",
            headers={"Content-Type": content_type, "x-upsert": "true"},
            content=data,
        )
        _raise_for_status(response, "Storage put")

    def presign_put(
        self, key: str, content_type: str, ttl: int = DEFAULT_TTL_SECONDS
    ) -> PresignedPut:
        validate_key(key)
        url = f"{self._storage_url}/object/upload/sign/{self._bucket}/{quote(key)}"
        response = self._send("POST", url, "Sign upload", json={"expiresIn": ttl})
        _raise_for_status(response, "Sign upload")

        data = response.json()
        signed = data.get("url") or ""
        token = data.get("token") or ""
        if not signed and not token:
            raise StorageError("Sign upload: missing signed URL", code="E_SIGN_UPLOAD_FAILED")
        if not signed:
            signed = f"/object/upload/sign/{self._bucket}/{quote(key)}?token={token}"

        return PresignedPut(
            key=key,
            url=self._absolute(signed),
            expires_in=ttl,
            headers={"Content-Type": content_type},
        )

    def presign_get(self, key: str, ttl: int = DEFAULT_TTL_SECONDS) -> str:
        validate_key(key)
        url = f"{self._storage_url}/object/sign/{self._bucket}/{quote(key)}"
        response = self._send("POST", url, "Sign download", json={"expiresIn": ttl})
        _raise_for_status(response, "Sign download")

        data = response.json()
        signed_path = data.get("signedURL") or data.get("signedUrl") or ""
        if not signed_path:
            raise StorageError(
                "Sign download: missing signed URL", code="E_SIGN_DOWNLOAD_FAILED"
            )

        signed_url = self._absolute(signed_path)
        if self._public_cdn:
            parts = urlsplit(signed_url)
            cdn = urlsplit(self._public_cdn)
            signed_url = urlunsplit((cdn.scheme, cdn.netloc, parts.path, parts.query, ""))
        return signed_url

    def delete(self, key: str) -> None:
        validate_key(key)
        response = self._send("DELETE", self._object_url(key), "Storage delete")
        if response.status_code == 404:
            return
        _raise_for_status(response, "Storage delete")

    def head(self, key: str) -> ObjectMetadata | None:
        validate_key(key)
        response = self._send("HEAD", self._object_url(key), "Storage head")
        if response.status_code in (400, 404):
            return None
        _raise_for_status(response, "Storage head")

        return ObjectMetadata(
            key=key,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            size_bytes=int(response.headers.get("content-length", "0")),
        )

    def read_prefix(self, key: str, length: int) -> bytes:
        validate_key(key)
        response = self._send(
            "GET",
            self._object_url(key),
            "Storage read",
            headers={"Range": f"bytes=0-{max(length - 1, 0)}"},
        )
        if response.status_code == 404:
            raise StorageError(f"Object not found: {key}", code="E_STORAGE_MISSING")
        _raise_for_status(response, "Storage read")
        return response.content[:length]

    def list_objects(self, prefix: str) -> Iterator[ObjectMetadata]:
        # The list endpoint is one folder deep; folders come back with id=None.
        folders = [prefix.rstrip("/")]
        while folders:
            folder = folders.pop()
            offset = 0
            while True:
                response = self._send(
                    "POST",
                    f"{self._storage_url}/object/list/{self._bucket}",
                    "Storage list",
                    json={"prefix": folder, "limit": LIST_PAGE_SIZE, "offset": offset},
                )
                _raise_for_status(response, "Storage list")
                entries = response.json() or []
                for entry in entries:
                    child = f"{folder}/{entry['name']}" if folder else entry["name"]
                    if entry.get("id") is None:
                        folders.append(child)
                        continue
                    metadata = entry.get("metadata") or {}
                    yield ObjectMetadata(
                        key=child,
                        content_type=metadata.get("mimetype", "application/octet-stream"),
                        size_bytes=int(metadata.get("size", 0)),
                        last_modified=_parse_timestamp(
                            entry.get("updated_at") or entry.get("created_at")
                        ),
                    )
                if len(entries) < LIST_PAGE_SIZE:
                    break
                offset += LIST_PAGE_SIZE


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class FakeStorageClient(StorageClientBase):
    """Fake storage client for testing without a real object store.

    Stores objects in memory and provides deterministic behavior for unit tests.
    Failures can be scripted with fail_next().
    """

    def __init__(self, presign_enabled: bool = True):
        self._objects: dict[str, tuple[bytes, str, datetime]] = {}
        self._failures: list[StorageError] = []
        self._presign_enabled = presign_enabled
        self.put_calls = 0

    @property
    def supports_presigned_upload(self) -> bool:
        return self._presign_enabled

    def fail_next(self, *errors: StorageError) -> None:
        """Queue errors raised by the next put/presign calls (test helper)."""
        self._failures.extend(errors)

    def _maybe_fail(self) -> None:
        if self._failures:
            raise self._failures.pop(0)

    def put(self, key: str, data: bytes | BinaryIO, content_type: str) -> None:
        validate_key(key)
        self.put_calls += 1
        self._maybe_fail()
        content = data if isinstance(data, bytes) else data.read()
        self._objects[key] = (content, content_type, datetime.now(UTC))

    def presign_put(
        self, key: str, content_type: str, ttl: int = DEFAULT_TTL_SECONDS
    ) -> PresignedPut:
        validate_key(key)
        self._maybe_fail()
        return PresignedPut(
            key=key,
            url=f"https://fake-storage.test/upload/{key}?token=fake-{uuid4()}",
            expires_in=ttl,
            headers={"Content-Type": content_type},
        )

    def presign_get(self, key: str, ttl: int = DEFAULT_TTL_SECONDS) -> str:
        validate_key(key)
        self._maybe_fail()
        return f"https://fake-storage.test/download/{key}?expires_in={ttl}&token=fake-{uuid4()}"

    def delete(self, key: str) -> None:
        validate_key(key)
        self._maybe_fail()
        self._objects.pop(key, None)

    def head(self, key: str) -> ObjectMetadata | None:
        validate_key(key)
        if key not in self._objects:
            return None
        content, content_type, modified = self._objects[key]
        return ObjectMetadata(
            key=key, content_type=content_type, size_bytes=len(content), last_modified=modified
        )

    def read_prefix(self, key: str, length: int) -> bytes:
        validate_key(key)
        if key not in self._objects:
            raise StorageError(f"Object not found: {key}", code="E_STORAGE_MISSING")
        return self._objects[key][0][:length]

    def list_objects(self, prefix: str) -> Iterator[ObjectMetadata]:
        for key in sorted(self._objects):
            if key.startswith(prefix):
                content, content_type, modified = self._objects[key]
                yield ObjectMetadata(
                    key=key,
                    content_type=content_type,
                    size_bytes=len(content),
                    last_modified=modified,
                )

    # Test helper methods

    def put_object(
        self,
        key: str,
        content: bytes,
        content_type: str = "video/mp4",
        last_modified: datetime | None = None,
    ) -> None:
        """Store an object directly, bypassing failure scripting (test helper)."""
        self._objects[key] = (content, content_type, last_modified or datetime.now(UTC))

    def get_object(self, key: str) -> bytes | None:
        """Get object content directly (test helper)."""
        if key not in self._objects:
            return None
        return self._objects[key][0]

    def keys(self) -> list[str]:
        """All stored keys (test helper)."""
        return sorted(self._objects)

    def clear(self) -> None:
        """Clear all stored objects (test helper)."""
        self._objects.clear()
        self._failures.clear()


_fake_client: FakeStorageClient | None = None


def get_storage_client() -> StorageClientBase:
    """Get the configured storage client.

    Returns:
        StorageClient if OBJECT_STORE_URL and OBJECT_STORE_SERVICE_KEY are set,
        a process-wide FakeStorageClient otherwise.
    """
    from coursecast.config import get_settings

    settings = get_settings()
    base_url = settings.object_store_url or os.environ.get("OBJECT_STORE_URL")
    service_key = settings.object_store_service_key or os.environ.get("OBJECT_STORE_SERVICE_KEY")

    if base_url and service_key:
        return StorageClient(
            base_url=base_url,
            service_key=service_key,
            bucket=settings.object_store_bucket,
            public_cdn=settings.object_store_public_cdn,
        )

    # Fake client for local dev / tests without an object store
    global _fake_client
    if _fake_client is None:
        _fake_client = FakeStorageClient()
    return _fake_client


__all__ = [
    "DEFAULT_TTL_SECONDS",
    "FakeStorageClient",
    "InvalidStorageKey",
    "ObjectMetadata",
    "PresignedPut",
    "StorageClient",
    "StorageClientBase",
    "StorageError",
    "StoreAccessDenied",
    "StoreUnavailable",
    "get_storage_client",
]
