"""Caller identity: JWT verification and the middleware that attaches a Viewer."""

from coursecast.auth.middleware import AuthMiddleware, Viewer, get_viewer
from coursecast.auth.verifier import JwksVerifier, TokenVerifier

__all__ = [
    "AuthMiddleware",
    "JwksVerifier",
    "TokenVerifier",
    "Viewer",
    "get_viewer",
]
