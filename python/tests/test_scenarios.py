"""End-to-end flows across tickets, webhooks, playback and the recording client."""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from coursecast.client import DraftMetadata, DraftStore, Uploader
from coursecast.db.models import StorageDeletion, UserRole, Video, VideoStatus
from coursecast.services.transcoding import FakeTranscodingAdapter
from coursecast.storage import FakeStorageClient
from tests.factories import (
    create_course,
    create_user,
    create_video,
    enroll,
    reload_lesson,
    reload_video,
)
from tests.helpers import (
    MP4_BYTES,
    WEBHOOK_SECRET,
    WEBM_BYTES,
    auth_headers,
    mint_test_token,
    signed_webhook_headers,
    webhook_body,
)


@pytest.fixture
def teacher(db_session):
    return create_user(db_session, role=UserRole.teacher)


@pytest.fixture
def course_id(db_session, teacher):
    return create_course(db_session, teacher)


@pytest.fixture
def student(db_session, course_id):
    user_id = create_user(db_session)
    enroll(db_session, course_id, user_id)
    return user_id


@pytest.fixture
def lesson_id(authenticated_client: TestClient, teacher, course_id):
    response = authenticated_client.post(
        f"/courses/{course_id}/lessons",
        json={"title": "Lesson 1"},
        headers=auth_headers(teacher),
    )
    assert response.status_code == 201
    return response.json()["data"]["id"]


def _webhook(client: TestClient, event_type: str, data: dict):
    body = webhook_body(event_type, data)
    response = client.post(
        "/webhooks/transcode", content=body, headers=signed_webhook_headers(body)
    )
    assert response.status_code == 200
    return response.json()["data"]


def _provider_direct_upload(client: TestClient, teacher, lesson_id, content_hash: str) -> dict:
    ticket = client.post(
        "/videos/upload-tickets",
        json={
            "lesson_ref": lesson_id,
            "filename": "lesson.webm",
            "content_type": "video/webm",
            "size_bytes": len(WEBM_BYTES),
            "content_hash": content_hash,
        },
        headers=auth_headers(teacher),
    ).json()["data"]
    assert ticket["target"] == "provider-direct"
    response = client.post(
        f"/videos/upload-tickets/{ticket['ticket_id']}/complete", headers=auth_headers(teacher)
    )
    assert response.status_code == 200
    return ticket


def _playback(client: TestClient, user_id, lesson_id):
    return client.get(f"/lessons/{lesson_id}/video", headers=auth_headers(user_id))


class TestProviderDirectHappyPath:
    def test_recording_becomes_streamable(
        self, authenticated_client: TestClient, db_session, teacher, student, lesson_id
    ):
        ticket = _provider_direct_upload(authenticated_client, teacher, lesson_id, "h-happy")

        _webhook(
            authenticated_client,
            "video.upload.asset_created",
            {"id": ticket["upload_id"], "asset_id": "as_abc"},
        )
        assert reload_video(db_session, UUID(ticket["video_ref"])).status == VideoStatus.processing

        outcome = _webhook(
            authenticated_client,
            "video.asset.ready",
            {"id": "as_abc", "playback_ids": [{"id": "pb_abc"}], "max_stored_resolution": "HD"},
        )
        assert outcome["outcome"] == "applied"

        data = _playback(authenticated_client, student, lesson_id).json()["data"]
        assert data["status"] == "ready"
        assert data["stream_url"] == "https://stream.example.test/pb_abc.m3u8"
        assert data["video_ref"] == ticket["video_ref"]


class TestServerProxiedStoreHosted:
    def test_mp4_is_served_from_signed_url(
        self, authenticated_client: TestClient, db_session, teacher, student, lesson_id
    ):
        response = authenticated_client.post(
            "/videos/upload",
            data={"lesson_ref": str(lesson_id)},
            files={"file": ("lesson.mp4", MP4_BYTES, "video/mp4")},
            headers=auth_headers(teacher),
        )
        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ready"

        video = db_session.execute(select(Video)).scalar_one()
        assert video.storage_key.startswith(f"videos/{lesson_id}/")
        assert video.storage_key.endswith("-lesson.mp4")

        data = _playback(authenticated_client, student, lesson_id).json()["data"]
        assert data["status"] == "ready"
        assert data["kind"] == "file"
        assert data["expires_in"] == 3600
        assert "expires_in=3600" in data["stream_url"]


class TestReplaceVideo:
    def test_replacement_hides_old_video_while_processing(
        self, authenticated_client: TestClient, db_session, teacher, student, lesson_id
    ):
        v1 = create_video(db_session, lesson_id, teacher, status=VideoStatus.ready)
        v1_key = reload_video(db_session, v1).storage_key

        ticket = _provider_direct_upload(authenticated_client, teacher, lesson_id, "h-v2")
        _webhook(
            authenticated_client,
            "video.upload.asset_created",
            {"id": ticket["upload_id"], "asset_id": "as_v2"},
        )

        assert str(reload_lesson(db_session, lesson_id).video_id) == ticket["video_ref"]
        queued = db_session.execute(select(StorageDeletion.storage_key)).scalars().all()
        assert v1_key in queued

        data = _playback(authenticated_client, student, lesson_id).json()["data"]
        assert data["status"] == "processing"
        assert data["stream_url"] is None


class TestFailedTranscode:
    def test_student_sees_error_and_no_url(
        self, authenticated_client: TestClient, db_session, teacher, student, lesson_id
    ):
        video_id = create_video(db_session, lesson_id, teacher, provider_asset_id="as_bad")

        _webhook(
            authenticated_client,
            "video.asset.errored",
            {"id": "as_bad", "errors": {"messages": ["codec_unsupported"]}},
        )

        video = reload_video(db_session, video_id)
        assert video.status == VideoStatus.failed
        assert video.processing_error == "codec_unsupported"

        data = _playback(authenticated_client, student, lesson_id).json()["data"]
        assert data["status"] == "failed"
        assert data["error"] == "codec_unsupported"
        assert data["stream_url"] is None


class TestDraftRecovery:
    @pytest.fixture
    def fake_storage(self):
        return FakeStorageClient(presign_enabled=False)

    @pytest.fixture
    def fake_transcoder(self):
        return FakeTranscodingAdapter(webhook_secret=WEBHOOK_SECRET, direct_upload=False)

    def test_draft_survives_restart_and_uploads(
        self, authenticated_client: TestClient, db_session, tmp_path, teacher, lesson_id
    ):
        DraftStore(tmp_path / "drafts").save(
            WEBM_BYTES,
            DraftMetadata(
                title="Week 3", lesson_id=lesson_id, duration_s=20.0, content_type="video/webm"
            ),
        )

        # A fresh store over the same directory stands in for the reloaded page.
        recovered = DraftStore(tmp_path / "drafts")
        [draft] = recovered.list()
        assert draft.metadata.duration_s == 20.0
        assert draft.metadata.size_bytes == len(WEBM_BYTES)
        assert draft.read_blob() == WEBM_BYTES

        uploader = Uploader(
            "http://testserver",
            mint_test_token(teacher),
            drafts=recovered,
            client=authenticated_client,
        )
        result = uploader.upload_draft(draft)

        assert result.target == "server-proxied"
        assert result.status == "ready"
        assert recovered.list() == []
        assert reload_lesson(db_session, lesson_id).video_id == result.video_ref


class TestUnauthorizedPlayback:
    def test_outsider_gets_403_without_url(
        self, authenticated_client: TestClient, db_session, teacher, lesson_id
    ):
        create_video(db_session, lesson_id, teacher, status=VideoStatus.ready)
        outsider = create_user(db_session)

        response = _playback(authenticated_client, outsider, lesson_id)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_PLAYBACK_FORBIDDEN"
        assert "stream_url" not in response.text
