"""Bearer JWT verification against the identity provider's JWKS.

The same verifier runs in every environment. Tests swap in
``tests.support.token_verifier.MockJwtVerifier``, which satisfies the
``TokenVerifier`` protocol with a local signing key.
"""

import threading
from typing import Any, Protocol
from uuid import UUID

import jwt
from jwt import PyJWKClient
from jwt.exceptions import (
    DecodeError,
    ExpiredSignatureError,
    InvalidAudienceError,
    InvalidIssuerError,
    InvalidSignatureError,
    InvalidTokenError,
    PyJWKClientError,
)

from coursecast.errors import ApiError, ApiErrorCode
from coursecast.logging import get_logger

logger = get_logger(__name__)

LEEWAY_SECONDS = 60
ALGORITHMS = ["RS256", "ES256"]

# Checked in order; InvalidTokenError is the base class and must stay last.
_REJECTIONS: tuple[tuple[type[InvalidTokenError], str, str], ...] = (
    (ExpiredSignatureError, "expired_token", "Token expired"),
    (InvalidSignatureError, "invalid_signature", "Invalid token signature"),
    (InvalidIssuerError, "invalid_issuer", "Invalid token issuer"),
    (InvalidAudienceError, "invalid_audience", "Invalid token audience"),
    (DecodeError, "decode_error", "Invalid token format"),
    (InvalidTokenError, "invalid_token", "Invalid token"),
)


class TokenVerifier(Protocol):
    def verify(self, token: str) -> dict[str, Any]:
        """Return the token's claims.

        Raises:
            ApiError: E_UNAUTHENTICATED for a bad token, E_AUTH_UNAVAILABLE
                when the key set cannot be fetched.
        """
        ...


def _is_kid_miss(error: PyJWKClientError) -> bool:
    text = str(error)
    return "Unable to find" in text or "kid" in text.lower()


class JwksVerifier:
    """Checks signature, exp (with leeway), iss, aud, and that sub is a UUID.

    Keys are cached for ``cache_ttl`` seconds. An unknown ``kid`` forces one
    refetch of the key set, which covers key rotation at the provider.
    """

    def __init__(self, jwks_url: str, issuer: str, audiences: list[str], cache_ttl: int = 3600):
        self.jwks_url = jwks_url
        self.issuer = issuer.rstrip("/")
        self.audiences = audiences
        self.cache_ttl = cache_ttl
        self._client: PyJWKClient | None = None
        self._lock = threading.Lock()

    def _get_jwks_client(self, refresh: bool = False) -> PyJWKClient:
        with self._lock:
            if refresh or self._client is None:
                self._client = PyJWKClient(self.jwks_url, cache_keys=True, lifespan=self.cache_ttl)
            return self._client

    def verify(self, token: str) -> dict[str, Any]:
        try:
            claims = jwt.decode(
                token,
                self._signing_key(token),
                algorithms=ALGORITHMS,
                audience=self.audiences,
                issuer=self.issuer,
                leeway=LEEWAY_SECONDS,
                options={"require": ["exp", "iss", "sub"], "verify_aud": True},
            )
        except InvalidTokenError as e:
            for error_type, reason, message in _REJECTIONS:
                if isinstance(e, error_type):
                    logger.warning("auth_failure", reason=reason, error=str(e))
                    raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, message) from e
            raise

        try:
            UUID(str(claims["sub"]))
        except ValueError as e:
            logger.warning("auth_failure", reason="invalid_sub")
            raise ApiError(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: sub is not a valid UUID"
            ) from e
        return claims

    def _signing_key(self, token: str) -> Any:
        try:
            return self._get_jwks_client().get_signing_key_from_jwt(token).key
        except PyJWKClientError as e:
            if not _is_kid_miss(e):
                logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
                raise ApiError(
                    ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
                ) from e

        logger.info("jwks_refresh", reason="kid_miss")
        try:
            return self._get_jwks_client(refresh=True).get_signing_key_from_jwt(token).key
        except PyJWKClientError as e:
            if not _is_kid_miss(e):
                logger.warning("auth_failure", reason="jwks_unavailable", error=str(e))
                raise ApiError(
                    ApiErrorCode.E_AUTH_UNAVAILABLE, "Authentication service unavailable"
                ) from e
            logger.warning("auth_failure", reason="kid_not_found")
            raise ApiError(
                ApiErrorCode.E_UNAUTHENTICATED, "Invalid token: signing key not found"
            ) from e
