"""Errors raised by the recording client.

These never cross the HTTP boundary; the uploader translates API error
envelopes into UploadFailed / TicketExpired.
"""


class ClientError(Exception):
    """Base class for recording client errors."""


class RecordingTooShort(ClientError):
    def __init__(self, duration_s: float, minimum_s: float):
        super().__init__(f"Recording is {duration_s:.2f}s, minimum is {minimum_s:.0f}s")
        self.duration_s = duration_s
        self.minimum_s = minimum_s


class QuotaExceeded(ClientError):
    """Draft could not be saved even after evicting older drafts."""

    def __init__(self, needed_bytes: int, available_bytes: int):
        super().__init__(
            f"Draft needs {needed_bytes} bytes, only {available_bytes} available"
        )
        self.needed_bytes = needed_bytes
        self.available_bytes = available_bytes


class DraftNotFound(ClientError):
    def __init__(self, draft_id: str):
        super().__init__(f"Draft {draft_id} not found")
        self.draft_id = draft_id


class InvalidLayout(ClientError, ValueError):
    """Layout geometry is outside the canvas or has a non-positive size."""


class UploadFailed(ClientError):
    """Upload did not complete. The draft is left in place for a retry."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class UploadCancelled(ClientError):
    def __init__(self):
        super().__init__("Upload cancelled")


class TicketExpired(UploadFailed):
    def __init__(self, message: str = "Upload ticket expired"):
        super().__init__(message, code="E_TICKET_EXPIRED", status_code=410)
