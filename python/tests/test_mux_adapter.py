"""Tests for the Mux transcoding adapter and provider error handling.

HTTP is mocked with respx; no test talks to the real provider.
"""

import base64
import json

import httpx
import jwt
import pytest
import respx
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from coursecast.config import PlaybackPolicy, get_settings
from coursecast.services.transcoding import (
    MuxAdapter,
    ProviderError,
    UnavailableTranscodingAdapter,
    build_transcoding_adapter,
    call_provider,
    classify_provider_error,
)

API = "https://api.mux.test"


@pytest.fixture
def http_client():
    with httpx.Client() as client:
        yield client


@pytest.fixture
def adapter(http_client):
    return MuxAdapter(
        http_client,
        token_id="tid",
        token_secret="tsecret",
        webhook_secret="whsec",
        api_url=API,
        stream_base_url="https://stream.mux.test",
        image_base_url="https://image.mux.test",
    )


@pytest.fixture(scope="module")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


class TestMuxAdapter:
    @respx.mock
    def test_direct_upload(self, adapter):
        route = respx.post(f"{API}/video/v1/uploads").mock(
            return_value=httpx.Response(
                201, json={"data": {"id": "up_1", "url": "https://storage.mux.test/up_1"}}
            )
        )

        upload = adapter.create_direct_upload(cors_origin="https://lms.test", passthrough="v1")

        assert upload.upload_id == "up_1"
        assert upload.upload_url == "https://storage.mux.test/up_1"
        assert upload.expires_in == 3600
        request = route.calls.last.request
        body = json.loads(request.content)
        assert body["cors_origin"] == "https://lms.test"
        assert body["new_asset_settings"] == {"playback_policy": ["public"], "passthrough": "v1"}
        assert request.headers["authorization"] == "Basic " + base64.b64encode(
            b"tid:tsecret"
        ).decode()

    @respx.mock
    def test_direct_upload_missing_url_is_terminal(self, adapter):
        respx.post(f"{API}/video/v1/uploads").mock(
            return_value=httpx.Response(201, json={"data": {"id": "up_1"}})
        )
        with pytest.raises(ProviderError) as exc_info:
            adapter.create_direct_upload()
        assert exc_info.value.transient is False

    @respx.mock
    def test_submit_returns_asset_id(self, adapter):
        route = respx.post(f"{API}/video/v1/assets").mock(
            return_value=httpx.Response(201, json={"data": {"id": "as_9"}})
        )

        assert adapter.submit("https://store.test/v.mp4") == "as_9"
        assert json.loads(route.calls.last.request.content)["input"] == [
            {"url": "https://store.test/v.mp4"}
        ]

    @respx.mock
    def test_get_upload(self, adapter):
        respx.get(f"{API}/video/v1/uploads/up_1").mock(
            return_value=httpx.Response(
                200, json={"data": {"id": "up_1", "status": "asset_created", "asset_id": "as_1"}}
            )
        )

        upload = adapter.get_upload("up_1")

        assert upload.status == "asset_created"
        assert upload.asset_id == "as_1"

    @respx.mock
    def test_get_ready_asset(self, adapter):
        respx.get(f"{API}/video/v1/assets/as_1").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "id": "as_1",
                        "status": "ready",
                        "playback_ids": [{"id": "pb_1", "policy": "public"}],
                        "max_stored_resolution": "HD",
                        "duration": 612.4,
                    }
                },
            )
        )

        asset = adapter.get_asset("as_1")

        assert asset.is_ready
        assert asset.playback_id == "pb_1"
        assert asset.max_stored_resolution == "HD"
        assert asset.duration_s == 612.4

    @respx.mock
    def test_get_errored_asset(self, adapter):
        respx.get(f"{API}/video/v1/assets/as_1").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "id": "as_1",
                        "status": "errored",
                        "errors": {"type": "invalid_input", "messages": ["codec_unsupported"]},
                    }
                },
            )
        )

        asset = adapter.get_asset("as_1")

        assert asset.is_errored
        assert asset.error == "codec_unsupported"

    @respx.mock
    def test_delete_missing_asset_is_ok(self, adapter):
        respx.delete(f"{API}/video/v1/assets/as_gone").mock(return_value=httpx.Response(404))
        adapter.delete_asset("as_gone")

    @respx.mock
    def test_server_error_propagates(self, adapter):
        respx.get(f"{API}/video/v1/assets/as_1").mock(return_value=httpx.Response(502))
        with pytest.raises(httpx.HTTPStatusError):
            adapter.get_asset("as_1")

    def test_public_playback_urls(self, adapter):
        assert adapter.playback_url("pb_1", ttl=3600) == "https://stream.mux.test/pb_1.m3u8"
        assert (
            adapter.thumbnail_url("pb_1", ttl=3600)
            == "https://image.mux.test/pb_1/thumbnail.jpg"
        )

    def test_signed_playback_urls(self, http_client, rsa_key):
        pem = rsa_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
        adapter = MuxAdapter(
            http_client,
            token_id="tid",
            token_secret="tsecret",
            stream_base_url="https://stream.mux.test",
            playback_policy=PlaybackPolicy.SIGNED,
            signing_key_id="key_1",
            signing_key_private=base64.b64encode(pem).decode(),
        )

        url = adapter.playback_url("pb_1", ttl=600)

        base, token = url.split("?token=")
        assert base == "https://stream.mux.test/pb_1.m3u8"
        assert jwt.get_unverified_header(token)["kid"] == "key_1"
        claims = jwt.decode(token, rsa_key.public_key(), algorithms=["RS256"], audience="v")
        assert claims["sub"] == "pb_1"

    def test_signed_policy_without_key_is_refused(self, http_client):
        adapter = MuxAdapter(
            http_client, token_id="t", token_secret="s", playback_policy=PlaybackPolicy.SIGNED
        )
        with pytest.raises(ProviderError):
            adapter.playback_url("pb_1", ttl=60)


class TestProviderErrors:
    @pytest.mark.parametrize(
        ("exc", "transient"),
        [
            (httpx.ReadTimeout("slow"), True),
            (httpx.ConnectError("refused"), True),
            (
                httpx.HTTPStatusError(
                    "429",
                    request=httpx.Request("GET", API),
                    response=httpx.Response(429),
                ),
                True,
            ),
            (
                httpx.HTTPStatusError(
                    "401",
                    request=httpx.Request("GET", API),
                    response=httpx.Response(401),
                ),
                False,
            ),
            (ValueError("bad json"), False),
        ],
    )
    def test_classification(self, exc, transient):
        assert classify_provider_error(exc).transient is transient

    def test_transient_errors_retry_then_succeed(self):
        calls = []
        slept = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("refused")
            return "as_1"

        assert call_provider(flaky, action="submit", sleep=slept.append) == "as_1"
        assert slept == [0.5]

    def test_gives_up_after_three_attempts(self):
        calls = []

        def down():
            calls.append(1)
            raise ProviderError("unavailable", transient=True, status_code=503)

        with pytest.raises(ProviderError):
            call_provider(down, action="submit", sleep=lambda _s: None)
        assert len(calls) == 3

    def test_terminal_error_is_not_retried(self):
        calls = []

        def forbidden():
            calls.append(1)
            raise ProviderError("forbidden", transient=False, status_code=403)

        with pytest.raises(ProviderError):
            call_provider(forbidden, action="submit", sleep=lambda _s: None)
        assert len(calls) == 1


class TestAdapterFactory:
    def test_without_credentials(self):
        adapter = build_transcoding_adapter(get_settings())

        assert isinstance(adapter, UnavailableTranscodingAdapter)
        assert adapter.supports_direct_upload is False

    def test_with_credentials(self, set_env, http_client):
        set_env("PROVIDER_TOKEN_ID", "tid")
        set_env("PROVIDER_TOKEN_SECRET", "tsecret")

        adapter = build_transcoding_adapter(get_settings(), http_client)

        assert isinstance(adapter, MuxAdapter)
        assert adapter.is_configured
