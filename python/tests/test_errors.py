"""Error codes, envelopes and the exception handlers wired into the app."""

import pytest
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.testclient import TestClient
from pydantic import BaseModel, Field

from coursecast.errors import (
    ERROR_CODE_TO_STATUS,
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    ServiceUnavailableError,
    StateConflict,
    WebhookUnverifiedError,
)
from coursecast.logging import clear_request_context
from coursecast.responses import (
    RETRY_AFTER_SECONDS,
    api_error_handler,
    error_response,
    unhandled_exception_handler,
    validation_error_handler,
)


class TicketBody(BaseModel):
    filename: str
    size_bytes: int = Field(gt=0)


@pytest.fixture
def handler_client() -> TestClient:
    """Bare app with the production handlers and routes that fail on purpose."""
    app = FastAPI()
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.get("/store-down")
    def store_down():
        raise ServiceUnavailableError(message="Object store unavailable")

    @app.get("/forbidden")
    def forbidden():
        raise ApiError(ApiErrorCode.E_PLAYBACK_FORBIDDEN, "Not enrolled in this course")

    @app.post("/tickets")
    def tickets(body: TicketBody):
        return {"data": body.model_dump()}

    @app.get("/crash")
    def crash():
        raise RuntimeError("postgres password is hunter2")

    return TestClient(app, raise_server_exceptions=False)


class TestEnvelope:
    def test_error_envelope(self):
        body = error_response(ApiErrorCode.E_TICKET_EXPIRED, "Upload ticket expired", "req-1")

        assert body == {
            "error": {
                "code": "E_TICKET_EXPIRED",
                "message": "Upload ticket expired",
                "request_id": "req-1",
            }
        }

    def test_request_id_omitted_outside_a_request(self):
        clear_request_context()
        assert "request_id" not in error_response(ApiErrorCode.E_INTERNAL, "boom")["error"]


class TestStatusMapping:
    def test_every_code_has_a_status(self):
        missing = [code for code in ApiErrorCode if code not in ERROR_CODE_TO_STATUS]
        assert missing == []

    @pytest.mark.parametrize(
        "code,status",
        [
            (ApiErrorCode.E_WEBHOOK_UNVERIFIED, 401),
            (ApiErrorCode.E_PLAYBACK_FORBIDDEN, 403),
            (ApiErrorCode.E_TICKET_NOT_FOUND, 404),
            (ApiErrorCode.E_INVALID_FILE_TYPE, 400),
            (ApiErrorCode.E_DUPLICATE_SUBTITLE, 400),
            (ApiErrorCode.E_STORAGE_MISSING, 400),
            (ApiErrorCode.E_FILE_TOO_LARGE, 413),
            (ApiErrorCode.E_STATE_CONFLICT, 409),
            (ApiErrorCode.E_TICKET_EXPIRED, 410),
            (ApiErrorCode.E_UPLOAD_FAILED, 502),
            (ApiErrorCode.E_STORE_UNAVAILABLE, 503),
            (ApiErrorCode.E_PROVIDER_UNAVAILABLE, 503),
        ],
    )
    def test_video_codes(self, code, status):
        assert ApiError(code, "x").status_code == status

    def test_subclass_defaults(self):
        assert NotFoundError().code == ApiErrorCode.E_NOT_FOUND
        assert ForbiddenError().status_code == 403
        assert InvalidRequestError().status_code == 400
        assert ServiceUnavailableError().code == ApiErrorCode.E_STORE_UNAVAILABLE
        assert WebhookUnverifiedError().status_code == 401


class TestStateConflict:
    def test_message_names_both_states(self):
        error = StateConflict("ready", "processing", reason="late asset_created")

        assert (error.current, error.attempted) == ("ready", "processing")
        assert str(error) == "Cannot transition video from ready to processing: late asset_created"

    def test_is_not_an_api_error(self):
        assert not isinstance(StateConflict("failed", "ready"), ApiError)


class TestHandlers:
    def test_unavailable_sets_retry_after(self, handler_client):
        response = handler_client.get("/store-down")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == str(RETRY_AFTER_SECONDS)
        assert response.json()["error"]["code"] == "E_STORE_UNAVAILABLE"

    def test_errors_are_not_cacheable(self, handler_client):
        response = handler_client.get("/forbidden")

        assert response.status_code == 403
        assert response.headers["Cache-Control"] == "no-store"
        assert "Retry-After" not in response.headers

    def test_validation_failure_is_400_naming_the_field(self, handler_client):
        response = handler_client.post("/tickets", json={"filename": "a.webm", "size_bytes": 0})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "E_INVALID_REQUEST"
        assert error["message"].startswith("size_bytes:")

    def test_unhandled_exception_hides_details(self, handler_client):
        response = handler_client.get("/crash")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "hunter2" not in response.text


class TestAppWiring:
    def test_malformed_json_rejected_before_routing(self, client: TestClient):
        response = client.post(
            "/health", content="{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Malformed JSON body"

    def test_webhook_path_keeps_raw_body(self, client: TestClient):
        response = client.post(
            "/webhooks/transcode",
            content="{not json",
            headers={"content-type": "application/json"},
        )

        assert response.json()["error"]["code"] == "E_WEBHOOK_UNVERIFIED"

    def test_unknown_route_uses_envelope(self, client: TestClient):
        response = client.get("/no-such-route")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "E_NOT_FOUND"
