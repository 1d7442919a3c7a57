"""Application settings loaded from environment variables.

Environment Configuration:
    COURSECAST_ENV: Deployment environment (local | test | staging | prod)
    DATABASE_URL: Database connection string (required)
    COURSECAST_INTERNAL_SECRET: Internal API secret (required in staging/prod)

Redis / Celery Configuration:
    REDIS_URL: Redis connection string (required for worker)
    CELERY_BROKER_URL: Celery broker URL (defaults to REDIS_URL)
    CELERY_RESULT_BACKEND: Celery result backend URL (defaults to REDIS_URL)

Auth Configuration (required in all environments):
    AUTH_JWKS_URL: Full URL to the identity provider JWKS endpoint
    AUTH_ISSUER: Expected JWT issuer (trailing slash stripped)
    AUTH_AUDIENCES: Comma-separated list of allowed audiences

Object Store Configuration:
    OBJECT_STORE_URL / OBJECT_STORE_SERVICE_KEY: Storage REST API (fake client when unset)
    OBJECT_STORE_BUCKET: Bucket holding lesson media
    OBJECT_STORE_PUBLIC_CDN: Optional host that signed GET URLs are rewritten onto

Transcoding Provider Configuration:
    PROVIDER_TOKEN_ID / PROVIDER_TOKEN_SECRET: API credentials (provider disabled when unset)
    PROVIDER_WEBHOOK_SECRET: Shared secret for webhook signatures
    PROVIDER_PLAYBACK_POLICY: public | signed
    PROVIDER_SIGNING_KEY_ID / PROVIDER_SIGNING_KEY_PRIVATE: Playback token signing key
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings

GIB = 1024 * 1024 * 1024


class Environment(str, Enum):
    LOCAL = "local"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


class PlaybackPolicy(str, Enum):
    """Playback policy for assets the provider creates."""

    PUBLIC = "public"
    SIGNED = "signed"


class Settings(BaseSettings):

    coursecast_env: Environment = Field(default=Environment.LOCAL, alias="COURSECAST_ENV")
    database_url: Annotated[str, Field(alias="DATABASE_URL")]
    coursecast_internal_secret: str | None = Field(
        default=None, alias="COURSECAST_INTERNAL_SECRET"
    )

    # Redis / Celery settings
    redis_url: str | None = Field(default=None, alias="REDIS_URL")
    celery_broker_url: str | None = Field(default=None, alias="CELERY_BROKER_URL")
    celery_result_backend: str | None = Field(default=None, alias="CELERY_RESULT_BACKEND")

    # Auth settings (required in all environments)
    auth_jwks_url: str | None = Field(default=None, alias="AUTH_JWKS_URL")
    auth_issuer: str | None = Field(default=None, alias="AUTH_ISSUER")
    auth_audiences: str | None = Field(default=None, alias="AUTH_AUDIENCES")

    # Object store settings
    object_store_url: str | None = Field(default=None, alias="OBJECT_STORE_URL")
    object_store_service_key: str | None = Field(default=None, alias="OBJECT_STORE_SERVICE_KEY")
    object_store_bucket: str = Field(default="lms-media", alias="OBJECT_STORE_BUCKET")
    object_store_public_cdn: str | None = Field(default=None, alias="OBJECT_STORE_PUBLIC_CDN")

    # Upload limits
    max_video_bytes: int = Field(default=2 * GIB, alias="MAX_VIDEO_BYTES")
    max_subtitle_bytes: int = Field(default=5 * 1024 * 1024, alias="MAX_SUBTITLE_BYTES")
    signed_url_ttl_seconds: int = Field(default=3600, alias="SIGNED_URL_TTL_SECONDS")
    allowed_video_mimes: str = Field(
        default="video/mp4,video/webm,video/ogg,video/quicktime",
        alias="ALLOWED_VIDEO_MIMES",
    )

    # Transcoding provider
    provider_api_url: str = Field(default="https://api.mux.com", alias="PROVIDER_API_URL")
    provider_stream_base_url: str = Field(
        default="https://stream.mux.com", alias="PROVIDER_STREAM_BASE_URL"
    )
    provider_image_base_url: str = Field(
        default="https://image.mux.com", alias="PROVIDER_IMAGE_BASE_URL"
    )
    provider_token_id: str | None = Field(default=None, alias="PROVIDER_TOKEN_ID")
    provider_token_secret: str | None = Field(default=None, alias="PROVIDER_TOKEN_SECRET")
    provider_webhook_secret: str | None = Field(default=None, alias="PROVIDER_WEBHOOK_SECRET")
    provider_playback_policy: PlaybackPolicy = Field(
        default=PlaybackPolicy.PUBLIC, alias="PROVIDER_PLAYBACK_POLICY"
    )
    provider_signing_key_id: str | None = Field(default=None, alias="PROVIDER_SIGNING_KEY_ID")
    provider_signing_key_private: str | None = Field(
        default=None, alias="PROVIDER_SIGNING_KEY_PRIVATE"
    )
    provider_cors_origin: str = Field(default="*", alias="PROVIDER_CORS_ORIGIN")
    provider_timeout_s: int = Field(default=30, alias="PROVIDER_TIMEOUT_S")
    transcode_stored_uploads: bool = Field(default=False, alias="TRANSCODE_STORED_UPLOADS")

    # Reconciliation windows
    orphan_grace_hours: int = Field(default=24, alias="ORPHAN_GRACE_HOURS")
    webhook_dedup_window_hours: int = Field(default=24, alias="WEBHOOK_DEDUP_WINDOW_HOURS")
    webhook_buffer_minutes: int = Field(default=15, alias="WEBHOOK_BUFFER_MINUTES")
    provider_sync_stale_minutes: int = Field(default=30, alias="PROVIDER_SYNC_STALE_MINUTES")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @model_validator(mode="after")
    def validate_required_settings(self) -> "Settings":
        missing = [
            alias
            for alias, value in (
                ("AUTH_JWKS_URL", self.auth_jwks_url),
                ("AUTH_ISSUER", self.auth_issuer),
                ("AUTH_AUDIENCES", self.auth_audiences),
            )
            if not value
        ]
        if missing:
            raise ValueError(f"Missing required auth settings: {', '.join(missing)}.")

        if self.is_deployed and not self.coursecast_internal_secret:
            raise ValueError(
                "COURSECAST_INTERNAL_SECRET is required for "
                f"COURSECAST_ENV={self.coursecast_env.value}"
            )

        signed = self.provider_playback_policy == PlaybackPolicy.SIGNED
        if signed and not (self.provider_signing_key_id and self.provider_signing_key_private):
            raise ValueError(
                "PROVIDER_SIGNING_KEY_ID and PROVIDER_SIGNING_KEY_PRIVATE are required "
                "when PROVIDER_PLAYBACK_POLICY=signed"
            )

        if self.max_video_bytes <= 0 or self.signed_url_ttl_seconds <= 0:
            raise ValueError("MAX_VIDEO_BYTES and SIGNED_URL_TTL_SECONDS must be positive")
        return self

    @property
    def is_deployed(self) -> bool:
        """staging or prod: internal header and signed webhooks are mandatory."""
        return self.coursecast_env in (Environment.STAGING, Environment.PROD)

    @property
    def requires_internal_header(self) -> bool:
        return self.is_deployed

    @property
    def webhook_secret_required(self) -> bool:
        return self.is_deployed

    @property
    def audience_list(self) -> list[str]:
        return _split_csv(self.auth_audiences)

    @property
    def normalized_issuer(self) -> str | None:
        return self.auth_issuer.rstrip("/") if self.auth_issuer else None

    @property
    def allowed_video_mime_set(self) -> frozenset[str]:
        return frozenset(mime.lower() for mime in _split_csv(self.allowed_video_mimes))

    @property
    def provider_enabled(self) -> bool:
        return bool(self.provider_token_id and self.provider_token_secret)

    @property
    def effective_celery_broker_url(self) -> str | None:
        return self.celery_broker_url or self.redis_url

    @property
    def effective_celery_result_backend(self) -> str | None:
        return self.celery_result_backend or self.redis_url


def _split_csv(value: str | None) -> list[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


@lru_cache
def get_settings() -> Settings:
    """Settings from the environment, built once per process.

    Raises:
        ValidationError: A required setting is missing or invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Forget the cached Settings so the next call rereads the environment."""
    get_settings.cache_clear()
