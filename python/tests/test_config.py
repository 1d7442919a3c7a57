"""Tests for application configuration."""

import pytest
from pydantic import ValidationError

from coursecast.config import Environment, Settings


def _make_settings(**overrides) -> Settings:
    """Build a Settings instance with test defaults + overrides."""
    defaults = {
        "DATABASE_URL": "postgresql+psycopg://localhost/test",
        "COURSECAST_ENV": "test",
        "AUTH_JWKS_URL": "http://localhost:9999/.well-known/jwks.json",
        "AUTH_ISSUER": "http://localhost:9999/",
        "AUTH_AUDIENCES": "coursecast, bff ,",
    }
    defaults.update(overrides)
    return Settings(**defaults)


class TestDefaults:
    def test_upload_limits(self):
        s = _make_settings()
        assert s.max_video_bytes == 2 * 1024 * 1024 * 1024
        assert s.signed_url_ttl_seconds == 3600
        assert s.allowed_video_mime_set == frozenset(
            {"video/mp4", "video/webm", "video/ogg", "video/quicktime"}
        )

    def test_reconciliation_windows(self):
        s = _make_settings()
        assert s.orphan_grace_hours == 24
        assert s.webhook_dedup_window_hours == 24
        assert s.webhook_buffer_minutes == 15

    def test_parsed_auth_values(self):
        s = _make_settings()
        assert s.audience_list == ["coursecast", "bff"]
        assert s.normalized_issuer == "http://localhost:9999"

    def test_provider_disabled_without_credentials(self):
        s = _make_settings()
        assert not s.provider_enabled
        assert not s.transcode_stored_uploads

    def test_provider_enabled_with_credentials(self):
        s = _make_settings(PROVIDER_TOKEN_ID="id", PROVIDER_TOKEN_SECRET="secret")
        assert s.provider_enabled

    def test_celery_urls_fall_back_to_redis(self):
        s = _make_settings(REDIS_URL="redis://localhost:6379/0")
        assert s.effective_celery_broker_url == "redis://localhost:6379/0"
        assert s.effective_celery_result_backend == "redis://localhost:6379/0"


class TestValidation:
    def test_missing_auth_settings_rejected(self):
        with pytest.raises(ValidationError, match="AUTH_JWKS_URL"):
            _make_settings(AUTH_JWKS_URL="")

    def test_internal_secret_required_in_prod(self):
        with pytest.raises(ValidationError, match="COURSECAST_INTERNAL_SECRET"):
            _make_settings(COURSECAST_ENV="prod")

    def test_prod_with_internal_secret(self):
        s = _make_settings(COURSECAST_ENV="prod", COURSECAST_INTERNAL_SECRET="s3cret")
        assert s.coursecast_env == Environment.PROD
        assert s.requires_internal_header
        assert s.webhook_secret_required

    def test_signed_playback_requires_signing_key(self):
        with pytest.raises(ValidationError, match="PROVIDER_SIGNING_KEY_ID"):
            _make_settings(PROVIDER_PLAYBACK_POLICY="signed")

    def test_non_positive_limits_rejected(self):
        with pytest.raises(ValidationError):
            _make_settings(MAX_VIDEO_BYTES="0")

    def test_custom_mime_list_is_normalized(self):
        s = _make_settings(ALLOWED_VIDEO_MIMES="Video/MP4, video/webm ,")
        assert s.allowed_video_mime_set == frozenset({"video/mp4", "video/webm"})
