"""Tokens, sample video bytes and signed provider webhooks for tests."""

import json
import time
from uuid import UUID, uuid4

import jwt

from coursecast.services.transcoding.webhooks import SIGNATURE_HEADER, sign_payload
from tests.support.token_verifier import TEST_AUDIENCE, TEST_ISSUER, MockJwtVerifier

DEFAULT_EXPIRES_IN = 3600
WEBHOOK_SECRET = "test-webhook-secret"

# Minimal container headers; only the leading bytes are inspected.
MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 2048
WEBM_BYTES = b"\x1a\x45\xdf\xa3" + b"\x9f\x42\x86\x81\x01" + b"\x00" * 2048
NOT_A_VIDEO = b"this is plain text, not a video container"


def mint_test_token(
    user_id: UUID | str,
    expires_in: int = DEFAULT_EXPIRES_IN,
    issuer: str = TEST_ISSUER,
    audience: str = TEST_AUDIENCE,
    **extra_claims,
) -> str:
    """Mint a valid RS256 test token for ``user_id``."""
    now = int(time.time())
    payload = {
        "sub": str(user_id),
        "iss": issuer,
        "aud": audience,
        "iat": now,
        "exp": now + expires_in,
        **extra_claims,
    }
    return jwt.encode(payload, MockJwtVerifier.get_private_key(), algorithm="RS256")


def auth_headers(user_id: UUID | str, **token_kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_test_token(user_id, **token_kwargs)}"}


def create_test_user_id() -> UUID:
    return uuid4()


def webhook_body(event_type: str, data: dict, event_id: str | None = None) -> bytes:
    """Provider webhook body as raw JSON bytes."""
    return json.dumps(
        {"type": event_type, "id": event_id or f"evt_{uuid4().hex[:12]}", "data": data}
    ).encode()


def signed_webhook_headers(raw_body: bytes, secret: str = WEBHOOK_SECRET) -> dict[str, str]:
    return {SIGNATURE_HEADER: sign_payload(secret, raw_body), "Content-Type": "application/json"}
