"""Storage key building and validation.

This module is the single point of logic for building object keys.
All key construction goes through the build_* functions so the purpose
prefix and the optional test-run prefix are applied exactly once.

Key layout:
    videos/{lesson_id}/{ts_ms}-{rand8}-{sanitized_name}
    subtitles/{lesson_id}-{lang}-{ts_ms}.vtt
    community/{ts_ms}-{sanitized_name}
    resources/{ts_ms}-{sanitized_name}

Rules:
    - No leading slash
    - Characters outside [A-Za-z0-9._-] in caller-supplied names become "_"
    - ".." collapses, so a sanitized name can never climb directories
    - A key must resolve inside its purpose prefix
"""

import os
import posixpath
import re
import secrets
import time
from enum import Enum

TEST_PREFIX_ENV_VAR = "STORAGE_TEST_PREFIX"

MAX_KEY_LENGTH = 255

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_DOT_RUNS = re.compile(r"\.{2,}")


class StoragePurpose(str, Enum):
    """Top-level key prefixes, one per kind of stored object."""

    COMMUNITY = "community"
    VIDEOS = "videos"
    SUBTITLES = "subtitles"
    RESOURCES = "resources"


class InvalidStorageKey(ValueError):
    """Key is empty, too long, or escapes its purpose prefix."""


def _get_test_prefix() -> str:
    prefix = os.environ.get(TEST_PREFIX_ENV_VAR, "")
    if prefix and not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return prefix


def sanitize_name(name: str, max_length: int = MAX_KEY_LENGTH) -> str:
    """Make a caller-supplied file name safe for use inside a key.

    Args:
        name: Original file name (may contain paths, spaces, unicode).
        max_length: Maximum length of the result.

    Returns:
        Sanitized name, never empty.

    Example:
        >>> sanitize_name("../My Lesson (1).mp4")
        '._My_Lesson__1_.mp4'
    """
    cleaned = _UNSAFE_CHARS.sub("_", name)
    cleaned = _DOT_RUNS.sub(".", cleaned)
    cleaned = cleaned[:max_length]
    if cleaned in ("", "."):
        return "file"
    return cleaned


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _cap(key: str) -> str:
    if len(key) > MAX_KEY_LENGTH:
        key = key[:MAX_KEY_LENGTH]
    return key


def build_video_key(lesson_id: int | str, filename: str) -> str:
    """Build a unique key for a lesson video upload.

    Uniqueness comes from the millisecond timestamp plus a random suffix,
    so two uploads of the same file name never collide.
    """
    stamp = f"{_timestamp_ms()}-{secrets.token_hex(4)}"
    lesson_part = sanitize_name(str(lesson_id))
    head = f"{_get_test_prefix()}{StoragePurpose.VIDEOS.value}/{lesson_part}/{stamp}-"
    return _cap(head + sanitize_name(filename, MAX_KEY_LENGTH - len(head)))


def build_subtitle_key(lesson_id: int | str, language_code: str) -> str:
    """Build the key for a lesson subtitle track (always WebVTT)."""
    lesson_part = sanitize_name(str(lesson_id))
    lang = sanitize_name(language_code)
    return _cap(
        f"{_get_test_prefix()}{StoragePurpose.SUBTITLES.value}/"
        f"{lesson_part}-{lang}-{_timestamp_ms()}.vtt"
    )


def build_community_key(filename: str) -> str:
    """Build the key for community post media."""
    head = f"{_get_test_prefix()}{StoragePurpose.COMMUNITY.value}/{_timestamp_ms()}-"
    return _cap(head + sanitize_name(filename, MAX_KEY_LENGTH - len(head)))


def purpose_prefix(purpose: StoragePurpose) -> str:
    """Listing prefix for every object of a purpose, test prefix included."""
    return f"{_get_test_prefix()}{purpose.value}/"


def purpose_of(key: str) -> StoragePurpose:
    """Return the purpose prefix of a key, validating it on the way.

    Raises:
        InvalidStorageKey: If the key is malformed or escapes its prefix.
    """
    validate_key(key)
    relative = _strip_test_prefix(key)
    return StoragePurpose(relative.split("/", 1)[0])


def validate_key(key: str, purpose: StoragePurpose | None = None) -> str:
    """Check that a key resolves inside a known purpose prefix.

    Args:
        key: Object key as stored in the database.
        purpose: If given, the key must live under this prefix.

    Returns:
        The key unchanged.

    Raises:
        InvalidStorageKey: If the key is empty, too long, absolute, or
            resolves outside the expected prefix.
    """
    if not key or len(key) > MAX_KEY_LENGTH:
        raise InvalidStorageKey(f"Invalid key length: {len(key or '')}")
    if key.startswith("/") or "\\" in key or "\x00" in key:
        raise InvalidStorageKey("Key must be a relative POSIX path")

    relative = _strip_test_prefix(key)
    normalized = posixpath.normpath(relative)
    if normalized != relative or normalized.startswith(".."):
        raise InvalidStorageKey("Key escapes its prefix")

    top, sep, rest = normalized.partition("/")
    if not sep or not rest:
        raise InvalidStorageKey("Key has no object name below its prefix")
    try:
        actual = StoragePurpose(top)
    except ValueError as e:
        raise InvalidStorageKey(f"Unknown key prefix: {top}") from e
    if purpose is not None and actual != purpose:
        raise InvalidStorageKey(f"Key is not under {purpose.value}/")
    return key


def _strip_test_prefix(key: str) -> str:
    prefix = _get_test_prefix()
    if prefix and key.startswith(prefix):
        return key[len(prefix) :]
    return key


def filename_from_key(key: str) -> str:
    """Last path segment of a key (used for stream redirects by filename)."""
    return key.rsplit("/", 1)[-1]
