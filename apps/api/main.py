"""uvicorn entrypoint for the CourseCast API: ``uvicorn main:app``.

Building the app here keeps ``coursecast.app`` importable by tests without
a full production environment.
"""

from coursecast.app import add_request_id_middleware, create_app

app = create_app()
add_request_id_middleware(app)

__all__ = ["app"]
