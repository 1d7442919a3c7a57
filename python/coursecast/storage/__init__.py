"""Storage module for object store operations.

Provides:
- StorageClientBase gateway with production and in-memory implementations
- Key building and purpose-prefix validation
- Backoff wrapper for transient store failures
- Test isolation support via configurable prefixes
"""

from coursecast.storage.client import (
    FakeStorageClient,
    ObjectMetadata,
    PresignedPut,
    StorageClient,
    StorageClientBase,
    StorageError,
    StoreAccessDenied,
    StoreUnavailable,
    get_storage_client,
)
from coursecast.storage.paths import (
    InvalidStorageKey,
    StoragePurpose,
    build_community_key,
    build_subtitle_key,
    build_video_key,
    filename_from_key,
    purpose_of,
    purpose_prefix,
    sanitize_name,
    validate_key,
)
from coursecast.storage.retry import with_store_retry

__all__ = [
    "StorageClient",
    "StorageClientBase",
    "FakeStorageClient",
    "PresignedPut",
    "ObjectMetadata",
    "StorageError",
    "StoreUnavailable",
    "StoreAccessDenied",
    "InvalidStorageKey",
    "StoragePurpose",
    "get_storage_client",
    "build_video_key",
    "build_subtitle_key",
    "build_community_key",
    "filename_from_key",
    "purpose_of",
    "purpose_prefix",
    "sanitize_name",
    "validate_key",
    "with_store_retry",
]
