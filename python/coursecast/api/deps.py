"""FastAPI dependencies for route handlers.

Shared gateways (object store, transcoding provider) are created once at
startup and stored on app.state; routes receive them via Depends.
"""

from fastapi import Request

from coursecast.db.session import get_db, get_session_factory
from coursecast.services.transcoding import TranscodingAdapter
from coursecast.storage import StorageClientBase

__all__ = ["get_db", "get_session_factory", "get_storage", "get_transcoder"]


def get_storage(request: Request) -> StorageClientBase:
    """Get the shared object store gateway from app state."""
    return request.app.state.storage_client


def get_transcoder(request: Request) -> TranscodingAdapter:
    """Get the shared transcoding adapter from app state."""
    return request.app.state.transcoder
