"""Provider webhook signature verification and payload normalization.

Signature header format (Mux-Signature):
    t=<unix seconds>,v1=<hex hmac-sha256 of "<t>.<raw body>">

Multiple v1 entries are allowed (secret rotation); any match verifies.
Timestamps older than SIGNATURE_TOLERANCE_S are rejected to stop replays.
"""

import hashlib
import hmac
import time

from coursecast.services.transcoding.types import TranscodeEvent, TranscodeEventKind

SIGNATURE_HEADER = "mux-signature"
SIGNATURE_TOLERANCE_S = 300

_EVENT_KINDS: dict[str, TranscodeEventKind] = {
    "video.upload.asset_created": TranscodeEventKind.UPLOAD_ASSET_CREATED,
    "video.asset.created": TranscodeEventKind.ASSET_CREATED,
    "video.asset.ready": TranscodeEventKind.ASSET_READY,
    "video.asset.errored": TranscodeEventKind.ASSET_ERRORED,
    "video.upload.errored": TranscodeEventKind.UPLOAD_ERRORED,
    "video.upload.cancelled": TranscodeEventKind.UPLOAD_ERRORED,
}


def compute_signature(secret: str, timestamp: int | str, raw_body: bytes) -> str:
    """HMAC-SHA256 over "<timestamp>.<body>", hex encoded."""
    signed_payload = f"{timestamp}.".encode() + raw_body
    return hmac.new(secret.encode(), signed_payload, hashlib.sha256).hexdigest()


def sign_payload(secret: str, raw_body: bytes, timestamp: int | None = None) -> str:
    """Build a signature header value (used by tests and local tooling)."""
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(secret, ts, raw_body)}"


def verify_signature(
    secret: str,
    raw_body: bytes,
    header: str | None,
    *,
    now: float | None = None,
    tolerance_s: int = SIGNATURE_TOLERANCE_S,
) -> bool:
    """Check a webhook signature header against the raw request body."""
    if not header:
        return False

    timestamp: str | None = None
    candidates: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            candidates.append(value)

    if timestamp is None or not candidates:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if abs(current - ts) > tolerance_s:
        return False

    expected = compute_signature(secret, timestamp, raw_body)
    return any(hmac.compare_digest(expected, candidate) for candidate in candidates)


def _error_text(data: dict) -> str:
    errors = data.get("errors") or data.get("error") or {}
    if isinstance(errors, dict):
        messages = errors.get("messages")
        if messages:
            return "; ".join(str(m) for m in messages)
        if errors.get("message"):
            return str(errors["message"])
        if errors.get("type"):
            return str(errors["type"])
    if isinstance(errors, str) and errors:
        return errors
    return "unknown_error"


def _first_playback_id(data: dict) -> str | None:
    for playback in data.get("playback_ids") or []:
        if playback.get("id"):
            return playback["id"]
    return None


def parse_event(payload: dict) -> TranscodeEvent | None:
    """Normalize a provider webhook body.

    Returns:
        TranscodeEvent, or None for event types the lifecycle does not track.

    Raises:
        ValueError: If the body lacks an event id or data object.
    """
    event_type = payload.get("type")
    event_id = payload.get("id")
    data = payload.get("data")
    if not event_type or not event_id or not isinstance(data, dict):
        raise ValueError("Webhook body must include type, id and data")

    kind = _EVENT_KINDS.get(event_type)
    if kind is None:
        return None

    if kind in (TranscodeEventKind.UPLOAD_ASSET_CREATED, TranscodeEventKind.UPLOAD_ERRORED):
        upload_id = data.get("id")
        asset_id = data.get("asset_id")
    else:
        upload_id = data.get("upload_id")
        asset_id = data.get("id")

    error = None
    if kind in (TranscodeEventKind.ASSET_ERRORED, TranscodeEventKind.UPLOAD_ERRORED):
        error = _error_text(data)
        if kind == TranscodeEventKind.UPLOAD_ERRORED and event_type.endswith("cancelled"):
            error = "upload_cancelled"

    duration = data.get("duration")
    return TranscodeEvent(
        event_id=str(event_id),
        event_type=event_type,
        kind=kind,
        upload_id=upload_id,
        asset_id=asset_id,
        playback_id=_first_playback_id(data),
        error=error,
        max_stored_resolution=data.get("max_stored_resolution"),
        duration_s=float(duration) if duration is not None else None,
        raw=payload,
    )
