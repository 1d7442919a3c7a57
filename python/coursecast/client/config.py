"""Recording client settings, read from the environment of the recording machine.

Kept apart from ``coursecast.config.Settings``: the client has no database
or JWKS configuration and must load without them.

    DRAFT_AUTOSAVE_INTERVAL_MS  autosave cadence (default 5000)
    DRAFT_RETENTION_DAYS        drafts older than this are collected (default 14)
    DRAFT_MAX_BYTES             byte quota for the draft directory (default 2 GiB)
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings

GIB = 1024 * 1024 * 1024


class ClientSettings(BaseSettings):
    draft_autosave_interval_ms: int = Field(
        default=5000, gt=0, alias="DRAFT_AUTOSAVE_INTERVAL_MS"
    )
    draft_retention_days: int = Field(default=14, gt=0, alias="DRAFT_RETENTION_DAYS")
    draft_max_bytes: int = Field(default=2 * GIB, gt=0, alias="DRAFT_MAX_BYTES")

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def autosave_interval_s(self) -> float:
        return self.draft_autosave_interval_ms / 1000


@lru_cache
def get_client_settings() -> ClientSettings:
    return ClientSettings()


def clear_client_settings_cache() -> None:
    get_client_settings.cache_clear()
