"""Tests for provider webhook handling (POST /webhooks/transcode)."""

import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from coursecast.db.models import (
    PendingWebhook,
    StorageDeletion,
    UserRole,
    Video,
    VideoStatus,
    WebhookEvent,
    WebhookOutcome,
    utcnow,
)
from coursecast.errors import WebhookUnverifiedError
from coursecast.services import webhooks as webhooks_service
from coursecast.services.transcoding import FakeTranscodingAdapter, parse_event
from coursecast.services.transcoding.webhooks import (
    SIGNATURE_HEADER,
    sign_payload,
    verify_signature,
)
from tests.factories import (
    create_course,
    create_lesson,
    create_user,
    create_video,
    reload_lesson,
    reload_video,
)
from tests.helpers import WEBHOOK_SECRET, signed_webhook_headers, webhook_body


@pytest.fixture
def teacher(db_session):
    return create_user(db_session, role=UserRole.teacher)


@pytest.fixture
def lesson_id(db_session, teacher):
    return create_lesson(db_session, create_course(db_session, teacher))


def _post(client: TestClient, body: bytes):
    return client.post("/webhooks/transcode", content=body, headers=signed_webhook_headers(body))


def _ledger_count(db) -> int:
    return db.execute(select(func.count()).select_from(WebhookEvent)).scalar_one()


class TestSignature:
    def test_missing_signature_rejected(self, client: TestClient, db_session):
        body = webhook_body("video.asset.ready", {"id": "as_1"})

        response = client.post(
            "/webhooks/transcode", content=body, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_WEBHOOK_UNVERIFIED"
        assert _ledger_count(db_session) == 0

    def test_wrong_secret_rejected(self, client: TestClient):
        body = webhook_body("video.asset.ready", {"id": "as_1"})

        response = client.post(
            "/webhooks/transcode", content=body, headers=signed_webhook_headers(body, "other")
        )

        assert response.status_code == 401

    def test_tampered_body_rejected(self, client: TestClient):
        body = webhook_body("video.asset.ready", {"id": "as_1"})
        headers = signed_webhook_headers(body)

        response = client.post(
            "/webhooks/transcode", content=body.replace(b"as_1", b"as_2"), headers=headers
        )

        assert response.status_code == 401

    def test_stale_timestamp_rejected(self):
        body = b'{"type": "video.asset.ready"}'
        header = sign_payload(WEBHOOK_SECRET, body, timestamp=int(time.time()) - 301)

        assert not verify_signature(WEBHOOK_SECRET, body, header)

    def test_rotated_secret_any_v1_matches(self):
        body = b"{}"
        ts = int(time.time())
        good = sign_payload(WEBHOOK_SECRET, body, timestamp=ts).split("v1=")[1]

        assert verify_signature(WEBHOOK_SECRET, body, f"t={ts},v1=deadbeef,v1={good}")

    def test_unsigned_accepted_locally_without_secret(self, db_session):
        body = webhook_body("video.asset.static_renditions.ready", {"id": "as_1"})

        result = webhooks_service.handle_webhook(
            db_session, body, None, transcoder=FakeTranscodingAdapter(webhook_secret=None)
        )

        assert result.outcome == "ignored"

    def test_unsigned_rejected_in_prod_without_secret(self, db_session, set_env):
        set_env("COURSECAST_ENV", "prod")
        set_env("COURSECAST_INTERNAL_SECRET", "s3cret")
        body = webhook_body("video.asset.ready", {"id": "as_1"})

        with pytest.raises(WebhookUnverifiedError):
            webhooks_service.handle_webhook(
                db_session, body, None, transcoder=FakeTranscodingAdapter(webhook_secret=None)
            )


class TestApplyEvents:
    def test_upload_asset_created_moves_to_processing(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        video_id = create_video(
            db_session, lesson_id, teacher, status=VideoStatus.uploading, provider_upload_id="up_9"
        )

        response = _post(
            client, webhook_body("video.upload.asset_created", {"id": "up_9", "asset_id": "as_9"})
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["received"] is True
        assert data["outcome"] == "applied"
        assert data["duplicate"] is False
        video = reload_video(db_session, video_id)
        assert video.status == VideoStatus.processing
        assert video.provider_asset_id == "as_9"

    def test_asset_ready_sets_playback_id(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        video_id = create_video(db_session, lesson_id, teacher, provider_asset_id="as_1")

        _post(
            client,
            webhook_body(
                "video.asset.ready",
                {
                    "id": "as_1",
                    "playback_ids": [{"id": "pb_abc", "policy": "public"}],
                    "max_stored_resolution": "HD",
                    "duration": 61.2,
                },
            ),
        )

        video = reload_video(db_session, video_id)
        assert video.status == VideoStatus.ready
        assert video.playback_id == "pb_abc"
        assert video.max_stored_resolution == "HD"
        assert video.duration_s == pytest.approx(61.2)

    def test_ready_for_transcoded_upload_releases_store_copy(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        video_id = create_video(db_session, lesson_id, teacher)
        video = reload_video(db_session, video_id)
        key = video.storage_key
        video.provider_asset_id = "as_5"
        db_session.commit()

        _post(
            client,
            webhook_body("video.asset.ready", {"id": "as_5", "playback_ids": [{"id": "p"}]}),
        )

        assert reload_video(db_session, video_id).storage_key is None
        queued = db_session.execute(select(StorageDeletion)).scalar_one()
        assert (queued.storage_key, queued.reason) == (key, "transcoded")

    def test_asset_errored_records_message(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        video_id = create_video(db_session, lesson_id, teacher, provider_asset_id="as_2")

        _post(
            client,
            webhook_body(
                "video.asset.errored",
                {
                    "id": "as_2",
                    "errors": {"type": "invalid_input", "messages": ["codec_unsupported"]},
                },
            ),
        )

        video = reload_video(db_session, video_id)
        assert video.status == VideoStatus.failed
        assert video.processing_error == "codec_unsupported"

    def test_upload_cancelled_fails_video(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        video_id = create_video(
            db_session, lesson_id, teacher, status=VideoStatus.uploading, provider_upload_id="up_3"
        )

        _post(client, webhook_body("video.upload.cancelled", {"id": "up_3"}))

        assert reload_video(db_session, video_id).processing_error == "upload_cancelled"

    def test_asset_created_promotes_pending_upload(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        live = create_video(db_session, lesson_id, teacher, status=VideoStatus.ready)
        pending = create_video(
            db_session, lesson_id, teacher, status=VideoStatus.uploading, provider_upload_id="up_4"
        )
        # Simulate a ticketed upload that has not been made live yet.
        lesson = reload_lesson(db_session, lesson_id)
        live_row = db_session.get(Video, live)
        lesson.video_id = live
        live_row.superseded_at = None
        db_session.commit()

        _post(
            client, webhook_body("video.upload.asset_created", {"id": "up_4", "asset_id": "as_4"})
        )

        assert reload_lesson(db_session, lesson_id).video_id == pending


class TestDeduplication:
    def test_duplicate_returns_recorded_outcome(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        create_video(db_session, lesson_id, teacher, provider_asset_id="as_1")
        body = webhook_body(
            "video.asset.ready", {"id": "as_1", "playback_ids": [{"id": "pb_1"}]}, event_id="evt_1"
        )

        first = _post(client, body).json()["data"]
        second = _post(client, body).json()["data"]

        assert first["outcome"] == "applied"
        assert second == {**first, "duplicate": True}
        assert _ledger_count(db_session) == 1

    def test_replay_after_window_is_processed_again(
        self, db_session, fake_transcoder, teacher, lesson_id
    ):
        body = webhook_body("video.asset.ready", {"id": "as_x"}, event_id="evt_old")
        db_session.add(
            WebhookEvent(
                event_id="evt_old",
                event_type="video.asset.ready",
                outcome=WebhookOutcome.applied,
                received_at=utcnow() - timedelta(hours=25),
            )
        )
        db_session.commit()

        result = webhooks_service.handle_webhook(
            db_session, body, sign_payload(WEBHOOK_SECRET, body), transcoder=fake_transcoder
        )

        assert result.duplicate is False
        assert result.outcome == "buffered"

    def test_conflicting_event_is_acknowledged(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        video_id = create_video(
            db_session, lesson_id, teacher, provider_asset_id="as_1", status=VideoStatus.ready
        )

        response = _post(client, webhook_body("video.asset.errored", {"id": "as_1"}))

        assert response.status_code == 200
        assert response.json()["data"]["outcome"] == "conflict"
        assert reload_video(db_session, video_id).status == VideoStatus.ready

    def test_untracked_type_is_ignored(self, client: TestClient, db_session):
        response = _post(client, webhook_body("video.asset.track.ready", {"id": "tr_1"}))

        assert response.status_code == 200
        assert response.json()["data"]["outcome"] == "ignored"
        assert _ledger_count(db_session) == 0

    def test_malformed_body_is_400(self, client: TestClient):
        response = _post(client, b"not json")
        assert response.status_code == 400

    def test_prune_drops_old_ledger_rows(self, db_session):
        now = utcnow()
        for event_id, age in (("evt_new", 1), ("evt_old", 30)):
            db_session.add(
                WebhookEvent(
                    event_id=event_id,
                    event_type="video.asset.ready",
                    outcome=WebhookOutcome.applied,
                    received_at=now - timedelta(hours=age),
                )
            )
        db_session.commit()

        assert webhooks_service.prune_webhook_events(db_session, now) == 1
        assert db_session.execute(select(WebhookEvent.event_id)).scalars().all() == ["evt_new"]


class TestBuffering:
    def test_unmatched_event_is_buffered_then_applied(
        self, client: TestClient, db_session, teacher, lesson_id
    ):
        body = webhook_body(
            "video.upload.asset_created", {"id": "up_7", "asset_id": "as_7"}, event_id="evt_7"
        )

        response = _post(client, body)

        assert response.json()["data"]["outcome"] == "buffered"
        assert db_session.execute(select(PendingWebhook)).scalar_one().event_id == "evt_7"

        video_id = create_video(
            db_session, lesson_id, teacher, status=VideoStatus.uploading, provider_upload_id="up_7"
        )
        counts = webhooks_service.retry_pending_webhooks(db_session)

        assert counts == {"applied": 1, "discarded": 0, "pending": 0}
        assert reload_video(db_session, video_id).status == VideoStatus.processing
        assert db_session.get(WebhookEvent, "evt_7").outcome == WebhookOutcome.applied
        assert db_session.execute(select(PendingWebhook)).first() is None

    def test_still_unmatched_stays_pending(self, client: TestClient, db_session):
        _post(client, webhook_body("video.asset.ready", {"id": "as_ghost"}))

        counts = webhooks_service.retry_pending_webhooks(db_session)

        assert counts == {"applied": 0, "discarded": 0, "pending": 1}
        db_session.expire_all()
        assert db_session.execute(select(PendingWebhook)).scalar_one().attempts == 1

    def test_discarded_after_buffer_window(self, client: TestClient, db_session):
        _post(client, webhook_body("video.asset.ready", {"id": "as_ghost"}))

        counts = webhooks_service.retry_pending_webhooks(
            db_session, now=utcnow() + timedelta(minutes=16)
        )

        assert counts["discarded"] == 1
        assert db_session.execute(select(PendingWebhook)).first() is None


class TestParseEvent:
    def test_asset_events_key_on_data_id(self):
        event = parse_event(
            {"type": "video.asset.created", "id": "e", "data": {"id": "as_1", "upload_id": "up_1"}}
        )

        assert (event.asset_id, event.upload_id) == ("as_1", "up_1")

    def test_missing_id_rejected(self):
        with pytest.raises(ValueError):
            parse_event({"type": "video.asset.ready", "data": {}})

    def test_header_name(self):
        assert SIGNATURE_HEADER == "mux-signature"
