"""Upload orchestrator for the recording client.

Drives one draft to a lesson:
1. Create the lesson first when only a course is given
2. Ask the API for an upload ticket (content_hash = draft hash, so a retry
   of the same draft gets the same ticket back)
3. Follow the ticket's target:
   - provider-direct / store-direct: PUT the bytes, then complete the ticket
   - server-proxied: multipart POST to /videos/upload
4. Delete the draft only after the API confirms the video

Any failure leaves the draft in place; calling upload_draft() again with
the same draft resumes from step 2.
"""

import threading
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from uuid import UUID

import httpx

from coursecast.client.drafts import Draft, DraftStore
from coursecast.client.errors import TicketExpired, UploadCancelled, UploadFailed
from coursecast.logging import get_logger

logger = get_logger(__name__)

CHUNK_SIZE = 256 * 1024
PROGRESS_INTERVAL_S = 0.5

FILE_EXTENSIONS = {
    "video/webm": ".webm",
    "video/mp4": ".mp4",
    "video/ogg": ".ogg",
    "video/quicktime": ".mov",
}


@dataclass(frozen=True)
class UploadProgress:
    sent_bytes: int
    total_bytes: int

    @property
    def fraction(self) -> float:
        return self.sent_bytes / self.total_bytes if self.total_bytes else 1.0


@dataclass(frozen=True)
class UploadResult:
    video_ref: UUID
    lesson_ref: int
    status: str
    size_bytes: int | None
    target: str


class _ProgressStream:
    """Chunked body that reports progress and honors cancellation."""

    def __init__(
        self,
        data: bytes,
        on_progress: Callable[[UploadProgress], None] | None,
        cancel: threading.Event | None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.data = data
        self.on_progress = on_progress
        self.cancel = cancel
        self._clock = clock
        self._last_report: float | None = None

    def _report(self, sent: int, force: bool = False) -> None:
        if self.on_progress is None:
            return
        now = self._clock()
        if force or self._last_report is None or now - self._last_report >= PROGRESS_INTERVAL_S:
            self._last_report = now
            self.on_progress(UploadProgress(sent, len(self.data)))

    def __iter__(self) -> Iterator[bytes]:
        sent = 0
        self._report(0, force=True)
        for offset in range(0, len(self.data), CHUNK_SIZE):
            if self.cancel is not None and self.cancel.is_set():
                raise UploadCancelled()
            chunk = self.data[offset : offset + CHUNK_SIZE]
            yield chunk
            sent += len(chunk)
            self._report(sent, force=sent == len(self.data))

    def read(self, size: int = -1) -> bytes:
        """File-like access for multipart bodies."""
        if not hasattr(self, "_iter"):
            self._iter = iter(self)
            self._buffer = b""
        while size < 0 or len(self._buffer) < size:
            try:
                self._buffer += next(self._iter)
            except StopIteration:
                break
        if size < 0:
            out, self._buffer = self._buffer, b""
        else:
            out, self._buffer = self._buffer[:size], self._buffer[size:]
        return out


def _error_from_response(response: httpx.Response, action: str) -> UploadFailed:
    code = None
    message = f"{action} failed with HTTP {response.status_code}"
    try:
        error = response.json().get("error") or {}
        code = error.get("code")
        message = error.get("message") or message
    except ValueError:
        pass
    if response.status_code == 410 or code == "E_TICKET_EXPIRED":
        return TicketExpired(message)
    return UploadFailed(message, code=code, status_code=response.status_code)


def _filename(title: str | None, content_type: str) -> str:
    stem = (title or "").strip() or "recording"
    mime = content_type.split(";", 1)[0].strip().lower()
    return stem + FILE_EXTENSIONS.get(mime, ".webm")


class Uploader:
    def __init__(
        self,
        api_base_url: str,
        token: str,
        *,
        drafts: DraftStore | None = None,
        client: httpx.Client | None = None,
        timeout_s: float = 30.0,
    ):
        self.api_base_url = api_base_url.rstrip("/")
        self.drafts = drafts
        self._auth = {"Authorization": f"Bearer {token}"}
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_s, connect=10.0))

    def close(self) -> None:
        self._client.close()

    def _api(self, method: str, path: str, action: str, **kwargs) -> dict:
        headers = {**self._auth, **kwargs.pop("headers", {})}
        try:
            response = self._client.request(
                method, f"{self.api_base_url}{path}", headers=headers, **kwargs
            )
        except UploadCancelled:
            raise
        except httpx.HTTPError as e:
            raise UploadFailed(f"{action} failed: {e}") from e
        if response.status_code >= 400:
            raise _error_from_response(response, action)
        return response.json()["data"]

    def create_lesson(self, course_ref: int, title: str, description: str | None = None) -> int:
        data = self._api(
            "POST",
            f"/courses/{course_ref}/lessons",
            "create_lesson",
            json={"title": title, "description": description},
        )
        return data["id"]

    def _put_bytes(
        self,
        url: str,
        body: _ProgressStream,
        headers: dict[str, str],
        content_type: str,
    ) -> None:
        try:
            response = self._client.put(
                url,
                content=iter(body),
                headers={
                    "Content-Type": content_type,
                    "Content-Length": str(len(body.data)),
                    **headers,
                },
            )
        except UploadCancelled:
            raise
        except httpx.HTTPError as e:
            raise UploadFailed(f"PUT to upload target failed: {e}") from e
        if response.status_code >= 400:
            raise UploadFailed(
                f"PUT to upload target failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

    def upload_draft(
        self,
        draft: Draft,
        *,
        lesson_ref: int | None = None,
        course_ref: int | None = None,
        on_progress: Callable[[UploadProgress], None] | None = None,
        cancel: threading.Event | None = None,
        delete_on_success: bool = True,
    ) -> UploadResult:
        """Upload a draft to a lesson, creating the lesson when only a course is given.

        Raises:
            UploadCancelled: cancel was set; the draft is untouched.
            TicketExpired: The ticket lapsed before completion; retry issues a new one.
            UploadFailed: Any other API, network or target failure.
        """
        meta = draft.metadata
        if lesson_ref is None:
            lesson_ref = meta.lesson_id
        if lesson_ref is None:
            course_ref = course_ref if course_ref is not None else meta.course_id
            if course_ref is None:
                raise ValueError("lesson_ref or course_ref is required")
            lesson_ref = self.create_lesson(course_ref, meta.title or "Untitled lesson")
            logger.info("lesson_created_for_draft", draft_id=draft.id, lesson_id=lesson_ref)

        blob = draft.read_blob()
        filename = _filename(meta.title, meta.content_type)
        ticket = self._api(
            "POST",
            "/videos/upload-tickets",
            "issue_upload_ticket",
            json={
                "lesson_ref": lesson_ref,
                "filename": filename,
                "content_type": meta.content_type,
                "size_bytes": len(blob),
                "content_hash": meta.content_hash,
            },
        )
        target = ticket["target"]
        body = _ProgressStream(blob, on_progress, cancel)
        logger.info(
            "draft_upload_started",
            draft_id=draft.id,
            lesson_id=lesson_ref,
            target=target,
            size_bytes=len(blob),
        )

        if target == "server-proxied":
            data = self._api(
                "POST",
                ticket["upload_url"],
                "upload_video",
                data={"lesson_ref": str(lesson_ref)},
                files={"file": (filename, body, meta.content_type)},
            )
        else:
            self._put_bytes(
                ticket["upload_url"], body, ticket.get("upload_headers") or {}, meta.content_type
            )
            data = self._api(
                "POST",
                f"/videos/upload-tickets/{ticket['ticket_id']}/complete",
                "complete_upload_ticket",
                json={"size_bytes": len(blob)},
            )

        result = UploadResult(
            video_ref=UUID(data["video_ref"]),
            lesson_ref=data["lesson_ref"],
            status=data["status"],
            size_bytes=data.get("size_bytes"),
            target=target,
        )
        logger.info(
            "draft_upload_completed",
            draft_id=draft.id,
            video_id=str(result.video_ref),
            status=result.status,
        )
        if delete_on_success and self.drafts is not None:
            self.drafts.delete(draft.id)
        return result
