"""Recording client: capture compositor, durable drafts and the uploader.

Runs on the teacher's machine, not in the API process. It talks to the
API only through upload tickets, ticket completion and subscriptions.
"""

from coursecast.client.drafts import AutoSaver, Draft, DraftMetadata, DraftStore, StorageUsage
from coursecast.client.errors import (
    ClientError,
    DraftNotFound,
    InvalidLayout,
    QuotaExceeded,
    RecordingTooShort,
    TicketExpired,
    UploadCancelled,
    UploadFailed,
)
from coursecast.client.uploader import Uploader, UploadProgress, UploadResult

__all__ = [
    "AutoSaver",
    "ClientError",
    "Draft",
    "DraftMetadata",
    "DraftNotFound",
    "DraftStore",
    "InvalidLayout",
    "QuotaExceeded",
    "RecordingTooShort",
    "StorageUsage",
    "TicketExpired",
    "UploadCancelled",
    "UploadFailed",
    "UploadProgress",
    "UploadResult",
    "Uploader",
]
