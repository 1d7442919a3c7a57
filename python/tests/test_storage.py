"""Tests for storage keys, the store gateway and retry backoff.

Tests cover:
- Key building with purpose prefixes and test prefix isolation
- Key validation against traversal and unknown prefixes
- StorageClient HTTP mapping (respx)
- FakeStorageClient behavior
- Backoff schedule for transient failures
"""

import json
from datetime import UTC, datetime

import httpx
import pytest
import respx

from coursecast.storage import (
    FakeStorageClient,
    InvalidStorageKey,
    ObjectMetadata,
    StorageClient,
    StorageError,
    StoragePurpose,
    StoreAccessDenied,
    StoreUnavailable,
    build_subtitle_key,
    build_video_key,
    filename_from_key,
    purpose_of,
    purpose_prefix,
    sanitize_name,
    validate_key,
    with_store_retry,
)
from coursecast.storage.retry import backoff_delays

BASE_URL = "https://store.example.test"
STORAGE_URL = f"{BASE_URL}/storage/v1"


class TestKeyBuilding:
    """Tests for key building utilities."""

    def test_video_key_layout(self, monkeypatch):
        monkeypatch.delenv("STORAGE_TEST_PREFIX", raising=False)

        key = build_video_key(42, "Week 1.mp4")

        assert key.startswith("videos/42/")
        assert key.endswith("-Week_1.mp4")
        assert purpose_of(key) == StoragePurpose.VIDEOS

    def test_same_name_never_collides(self):
        assert build_video_key(42, "a.mp4") != build_video_key(42, "a.mp4")

    def test_subtitle_key_layout(self):
        key = build_subtitle_key(42, "pt-BR")

        assert key.startswith("subtitles/42-pt-BR-")
        assert key.endswith(".vtt")
        assert filename_from_key(key) == key.removeprefix("subtitles/")

    def test_test_prefix_applied(self, monkeypatch):
        monkeypatch.setenv("STORAGE_TEST_PREFIX", "test_runs/run-123")

        key = build_video_key(7, "lecture.mp4")

        assert key.startswith("test_runs/run-123/videos/7/")
        assert purpose_prefix(StoragePurpose.VIDEOS) == "test_runs/run-123/videos/"
        assert validate_key(key, StoragePurpose.VIDEOS) == key

    def test_long_names_are_capped(self):
        assert len(build_video_key(1, "x" * 600 + ".mp4")) <= 255

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("../My Lesson (1).mp4", "._My_Lesson__1_.mp4"),
            ("clip.mp4", "clip.mp4"),
            ("", "file"),
            ("..", "file"),
        ],
    )
    def test_sanitize_name(self, raw, expected):
        assert sanitize_name(raw) == expected


class TestKeyValidation:
    @pytest.mark.parametrize(
        "key",
        [
            "",
            "/videos/1/a.mp4",
            "videos/../secrets/a",
            "videos/1/../../etc/passwd",
            "unknown/a.mp4",
            "videos",
            "videos\\1\\a.mp4",
            "v" * 300,
        ],
    )
    def test_rejects_bad_keys(self, key):
        with pytest.raises(InvalidStorageKey):
            validate_key(key)

    def test_rejects_wrong_purpose(self):
        with pytest.raises(InvalidStorageKey):
            validate_key("subtitles/1-en-1.vtt", StoragePurpose.VIDEOS)

    def test_gateway_validates_before_io(self):
        with pytest.raises(InvalidStorageKey):
            FakeStorageClient().put("../escape", b"x", "video/mp4")


class TestStorageClient:
    """Tests for the HTTP store gateway."""

    @pytest.fixture
    def client(self):
        return StorageClient(BASE_URL, "service-key", bucket="lms-media")

    @respx.mock
    def test_put_upserts_with_service_key(self, client):
        route = respx.post(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(200, json={"Key": "lms-media/videos/1/a.mp4"})
        )

        client.put("videos/1/a.mp4", b"bytes", "video/mp4")

        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer service-key"
        assert request.headers["x-upsert"] == "true"
        assert request.headers["content-type"] == "video/mp4"
        assert request.content == b"bytes"

    @respx.mock
    def test_presign_get_absolutizes_relative_url(self, client):
        respx.post(f"{STORAGE_URL}/object/sign/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(
                200, json={"signedURL": "/object/sign/lms-media/videos/1/a.mp4?token=t"}
            )
        )

        url = client.presign_get("videos/1/a.mp4", ttl=600)

        assert url == f"{STORAGE_URL}/object/sign/lms-media/videos/1/a.mp4?token=t"

    @respx.mock
    def test_presign_get_rewrites_onto_cdn(self):
        client = StorageClient(BASE_URL, "k", public_cdn="https://cdn.example.test/")
        respx.post(f"{STORAGE_URL}/object/sign/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(
                200, json={"signedURL": "/storage/v1/object/sign/lms-media/videos/1/a.mp4?token=t"}
            )
        )

        url = client.presign_get("videos/1/a.mp4")

        assert url.startswith("https://cdn.example.test/storage/v1/object/sign/lms-media/")
        assert url.endswith("/videos/1/a.mp4?token=t")

    @respx.mock
    def test_presign_put_from_token(self, client):
        respx.post(f"{STORAGE_URL}/object/upload/sign/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(200, json={"token": "tok"})
        )

        signed = client.presign_put("videos/1/a.mp4", "video/mp4", ttl=900)

        assert signed.url.endswith("/object/upload/sign/lms-media/videos/1/a.mp4?token=tok")
        assert signed.expires_in == 900
        assert signed.headers == {"Content-Type": "video/mp4"}

    @respx.mock
    def test_head_missing_is_none(self, client):
        respx.head(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(404)
        )
        assert client.head("videos/1/a.mp4") is None

    @respx.mock
    def test_head_reads_headers(self, client):
        respx.head(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(
                200, headers={"content-type": "video/mp4", "content-length": "2048"}
            )
        )

        meta = client.head("videos/1/a.mp4")

        assert meta == ObjectMetadata(
            key="videos/1/a.mp4", content_type="video/mp4", size_bytes=2048
        )

    @respx.mock
    def test_delete_missing_is_not_an_error(self, client):
        respx.delete(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(404)
        )
        client.delete("videos/1/a.mp4")

    @respx.mock
    def test_read_prefix_sends_range(self, client):
        route = respx.get(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(206, content=b"\x00\x00\x00\x18ftyp")
        )

        assert client.read_prefix("videos/1/a.mp4", 8) == b"\x00\x00\x00\x18ftyp"
        assert route.calls.last.request.headers["range"] == "bytes=0-7"

    @pytest.mark.parametrize(
        ("status", "error"),
        [(500, StoreUnavailable), (429, StoreUnavailable), (403, StoreAccessDenied)],
    )
    @respx.mock
    def test_status_mapping(self, client, status, error):
        respx.post(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            return_value=httpx.Response(status)
        )
        with pytest.raises(error):
            client.put("videos/1/a.mp4", b"x", "video/mp4")

    @respx.mock
    def test_network_error_is_transient(self, client):
        respx.post(f"{STORAGE_URL}/object/lms-media/videos/1/a.mp4").mock(
            side_effect=httpx.ConnectError("refused")
        )
        with pytest.raises(StoreUnavailable):
            client.put("videos/1/a.mp4", b"x", "video/mp4")

    @respx.mock
    def test_list_objects_walks_folders(self, client):
        def listing(request):
            prefix = json.loads(request.content)["prefix"]
            if prefix == "videos":
                return httpx.Response(200, json=[{"name": "12", "id": None}])
            return httpx.Response(
                200,
                json=[
                    {
                        "name": "1-a.mp4",
                        "id": "obj-1",
                        "updated_at": "2026-01-05T10:00:00Z",
                        "metadata": {"mimetype": "video/mp4", "size": 99},
                    }
                ],
            )

        respx.post(f"{STORAGE_URL}/object/list/lms-media").mock(side_effect=listing)

        objects = list(client.list_objects("videos/"))

        assert [o.key for o in objects] == ["videos/12/1-a.mp4"]
        assert objects[0].size_bytes == 99
        assert objects[0].last_modified == datetime(2026, 1, 5, 10, tzinfo=UTC)


class TestFakeStorageClient:
    """Tests for FakeStorageClient implementation."""

    @pytest.fixture
    def client(self):
        return FakeStorageClient()

    def test_put_and_head(self, client):
        client.put("videos/1/a.mp4", b"content", "video/mp4")

        meta = client.head("videos/1/a.mp4")

        assert meta.content_type == "video/mp4"
        assert meta.size_bytes == len(b"content")

    def test_read_prefix_missing(self, client):
        with pytest.raises(StorageError) as exc_info:
            client.read_prefix("videos/1/missing.mp4", 16)
        assert exc_info.value.code == "E_STORAGE_MISSING"

    def test_scripted_failures_are_consumed(self, client):
        client.fail_next(StoreUnavailable("down"))

        with pytest.raises(StoreUnavailable):
            client.put("videos/1/a.mp4", b"x", "video/mp4")
        client.put("videos/1/a.mp4", b"x", "video/mp4")

        assert client.put_calls == 2

    def test_presign_disabled(self):
        assert FakeStorageClient(presign_enabled=False).supports_presigned_upload is False


class TestRetry:
    def test_backoff_schedule(self):
        assert backoff_delays() == [0.5, 1.0, 2.0, 4.0]
        assert backoff_delays(10)[-1] == 30.0

    def test_transient_failures_are_retried(self):
        calls = []
        slept = []

        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise StoreUnavailable("blip")
            return "ok"

        assert with_store_retry(flaky, action="put", sleep=slept.append) == "ok"
        assert slept == [0.5, 1.0]

    def test_gives_up_after_max_attempts(self):
        slept = []

        def down():
            raise StoreUnavailable("down")

        with pytest.raises(StoreUnavailable):
            with_store_retry(down, action="put", sleep=slept.append)
        assert len(slept) == 4

    def test_terminal_errors_are_not_retried(self):
        slept = []

        def denied():
            raise StoreAccessDenied("no")

        with pytest.raises(StoreAccessDenied):
            with_store_retry(denied, action="put", sleep=slept.append)
        assert slept == []
