"""Durable local drafts of in-progress recordings.

Layout on disk, one directory per draft:

    <root>/<draft_id>/blob       recording bytes
    <root>/<draft_id>/meta.json  DraftMetadata

Each save writes both files to temporaries and os.replace()s them, blob
first; meta.json is the commit marker, so a crash mid-save leaves the
previous draft readable. Drafts past the retention window are removed on
the next list(). The draft being auto-saved is never evicted.
"""

import asyncio
import errno
import hashlib
import os
import shutil
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from pydantic import BaseModel, Field

from coursecast.client.config import get_client_settings
from coursecast.client.errors import DraftNotFound, QuotaExceeded
from coursecast.logging import get_logger

logger = get_logger(__name__)

BLOB_FILENAME = "blob"
META_FILENAME = "meta.json"
MAX_DRAFTS = 10


class DraftMetadata(BaseModel):
    """Caller-supplied description of a recording plus bookkeeping fields."""

    title: str | None = None
    description: str | None = None
    course_id: int | None = None
    lesson_id: int | None = None
    duration_s: float = 0.0
    quality: str | None = None
    layout: str | None = None
    content_type: str = "video/webm"
    size_bytes: int = 0
    content_hash: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    extra: dict = Field(default_factory=dict)


@dataclass(frozen=True)
class Draft:
    id: str
    metadata: DraftMetadata
    blob_path: Path

    def read_blob(self) -> bytes:
        return self.blob_path.read_bytes()


@dataclass(frozen=True)
class StorageUsage:
    used: int
    quota: int
    available: int


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _atomic_write(path: Path, data: bytes) -> None:
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


class DraftStore:
    """Filesystem draft store with a byte quota and a draft-count cap."""

    def __init__(
        self,
        root: Path | str,
        *,
        quota_bytes: int | None = None,
        max_drafts: int = MAX_DRAFTS,
        retention_days: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        settings = get_client_settings()
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.quota_bytes = settings.draft_max_bytes if quota_bytes is None else quota_bytes
        self.max_drafts = max_drafts
        self.retention = timedelta(
            days=settings.draft_retention_days if retention_days is None else retention_days
        )
        self._clock = clock
        self._autosaver: "AutoSaver | None" = None

    @property
    def active_draft_id(self) -> str | None:
        return self._autosaver.draft_id if self._autosaver else None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _draft_dir(self, draft_id: str) -> Path:
        if not draft_id or "/" in draft_id or draft_id.startswith("."):
            raise DraftNotFound(draft_id)
        return self.root / draft_id

    def _read(self, draft_dir: Path) -> Draft | None:
        meta_path = draft_dir / META_FILENAME
        blob_path = draft_dir / BLOB_FILENAME
        if not meta_path.is_file() or not blob_path.is_file():
            return None
        try:
            metadata = DraftMetadata.model_validate_json(meta_path.read_bytes())
        except ValueError:
            logger.warning("draft_metadata_unreadable", draft_id=draft_dir.name)
            return None
        return Draft(id=draft_dir.name, metadata=metadata, blob_path=blob_path)

    def _all(self) -> list[Draft]:
        drafts = []
        for child in self.root.iterdir():
            if child.is_dir() and not child.name.startswith("."):
                draft = self._read(child)
                if draft is not None:
                    drafts.append(draft)
        epoch = datetime.min.replace(tzinfo=UTC)
        drafts.sort(key=lambda d: d.metadata.updated_at or epoch, reverse=True)
        return drafts

    def list(self) -> list[Draft]:
        """Drafts newest-first. Expired drafts are removed first."""
        self.collect_garbage()
        return self._all()

    def load(self, draft_id: str) -> Draft:
        draft = self._read(self._draft_dir(draft_id))
        if draft is None:
            raise DraftNotFound(draft_id)
        return draft

    def usage(self) -> StorageUsage:
        used = sum(
            f.stat().st_size for f in self.root.rglob("*") if f.is_file()
        )
        return StorageUsage(
            used=used, quota=self.quota_bytes, available=max(0, self.quota_bytes - used)
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def delete(self, draft_id: str) -> None:
        draft_dir = self._draft_dir(draft_id)
        if not draft_dir.exists():
            raise DraftNotFound(draft_id)
        shutil.rmtree(draft_dir)
        logger.info("draft_deleted", draft_id=draft_id)

    def collect_garbage(self) -> int:
        """Remove drafts not updated within the retention window."""
        cutoff = self._clock() - self.retention
        removed = 0
        for draft in self._all():
            if draft.id == self.active_draft_id:
                continue
            updated = draft.metadata.updated_at
            if updated is not None and updated < cutoff:
                shutil.rmtree(self.root / draft.id, ignore_errors=True)
                removed += 1
                logger.info("draft_expired", draft_id=draft.id)
        return removed

    def _evict_oldest(self, keep: str) -> bool:
        candidates = [
            d for d in self._all() if d.id not in (keep, self.active_draft_id)
        ]
        if not candidates:
            return False
        victim = candidates[-1]
        shutil.rmtree(self.root / victim.id, ignore_errors=True)
        logger.info("draft_evicted", draft_id=victim.id)
        return True

    def _bytes_needed(self, draft_id: str, blob: bytes) -> int:
        existing = self.root / draft_id / BLOB_FILENAME
        current = existing.stat().st_size if existing.is_file() else 0
        return len(blob) - current

    def save(
        self, blob: bytes, metadata: DraftMetadata, draft_id: str | None = None
    ) -> Draft:
        """Atomically create or replace a draft.

        Older drafts are evicted (oldest first) to make room within the
        quota and the draft-count cap.

        Raises:
            QuotaExceeded: Still no room after evicting every other draft.
        """
        draft_id = draft_id or uuid.uuid4().hex
        draft_dir = self._draft_dir(draft_id)

        while self._bytes_needed(draft_id, blob) > self.usage().available:
            if not self._evict_oldest(keep=draft_id):
                raise QuotaExceeded(self._bytes_needed(draft_id, blob), self.usage().available)

        now = self._clock()
        previous = self._read(draft_dir)
        meta = metadata.model_copy(
            update={
                "size_bytes": len(blob),
                "content_hash": hashlib.sha256(blob).hexdigest(),
                "created_at": previous.metadata.created_at if previous else now,
                "updated_at": now,
            }
        )

        draft_dir.mkdir(parents=True, exist_ok=True)
        try:
            _atomic_write(draft_dir / BLOB_FILENAME, blob)
            _atomic_write(draft_dir / META_FILENAME, meta.model_dump_json().encode("utf-8"))
        except OSError as e:
            if e.errno in (errno.ENOSPC, errno.EDQUOT):
                if self._evict_oldest(keep=draft_id):
                    return self.save(blob, metadata, draft_id)
                raise QuotaExceeded(len(blob), self.usage().available) from e
            raise

        while len(self._all()) > self.max_drafts:
            if not self._evict_oldest(keep=draft_id):
                break

        logger.debug("draft_saved", draft_id=draft_id, size_bytes=len(blob))
        return Draft(id=draft_id, metadata=meta, blob_path=draft_dir / BLOB_FILENAME)

    # ------------------------------------------------------------------
    # Auto-save
    # ------------------------------------------------------------------

    def start_autosave(
        self,
        get_blob: Callable[[], bytes],
        get_meta: Callable[[], DraftMetadata],
        on_saved: Callable[[Draft], None] | None = None,
        *,
        on_error: Callable[[Exception], None] | None = None,
        interval_s: float | None = None,
    ) -> str:
        """Begin periodic saves on the running event loop. Returns the draft id."""
        if self._autosaver is not None:
            raise RuntimeError("An auto-save is already running")
        self._autosaver = AutoSaver(
            self, get_blob, get_meta, on_saved=on_saved, on_error=on_error, interval_s=interval_s
        )
        self._autosaver.start()
        return self._autosaver.draft_id

    async def stop_autosave(self) -> Draft | None:
        """Cancel the timer, flush one final save, return the draft."""
        saver, self._autosaver = self._autosaver, None
        if saver is None:
            return None
        return await saver.stop()


class AutoSaver:
    """Periodic saver for one draft; skips saves when the blob is unchanged."""

    def __init__(
        self,
        store: DraftStore,
        get_blob: Callable[[], bytes],
        get_meta: Callable[[], DraftMetadata],
        *,
        on_saved: Callable[[Draft], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        interval_s: float | None = None,
        draft_id: str | None = None,
    ):
        self.store = store
        self.draft_id = draft_id or uuid.uuid4().hex
        self.interval_s = (
            get_client_settings().autosave_interval_s if interval_s is None else interval_s
        )
        self._get_blob = get_blob
        self._get_meta = get_meta
        self._on_saved = on_saved
        self._on_error = on_error
        self._last_hash: str | None = None
        self._last_draft: Draft | None = None
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.save_now()

    def save_now(self) -> Draft | None:
        """Save if the blob changed.

        A failed save (quota or disk error) is logged and reported through
        on_error; the recording and the periodic loop carry on.
        """
        blob = self._get_blob()
        if not blob:
            return self._last_draft
        digest = hashlib.sha256(blob).hexdigest()
        if digest == self._last_hash:
            return self._last_draft
        try:
            draft = self.store.save(blob, self._get_meta(), self.draft_id)
        except (QuotaExceeded, OSError) as e:
            logger.warning(
                "draft_autosave_failed",
                draft_id=self.draft_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            if self._on_error:
                self._on_error(e)
            return self._last_draft
        self._last_hash = digest
        self._last_draft = draft
        if self._on_saved:
            self._on_saved(draft)
        return draft

    async def stop(self) -> Draft | None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        return self.save_now()
