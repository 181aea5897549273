import asyncio
import json

import httpx
import pytest

from rtclink.cloud.client import SessionApiClient, describe
from rtclink.errors import ConfigFetchError, SessionApiError
from rtclink.signaling.session import FALLBACK_CONFIGURATION

BASE_URL = "http://api.test/api/v1/signal"


def make_client(handler, **kwargs) -> SessionApiClient:
    return SessionApiClient(BASE_URL, user_id="188815492", transport=httpx.MockTransport(handler), **kwargs)


def call(handler, operation, **kwargs):
    async def scenario():
        async with make_client(handler, **kwargs) as client:
            return await operation(client)

    return asyncio.run(scenario())


def test_create_session_sends_identity_and_device() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"code": 0, "data": {"sessionId": "abc"}})

    session_id = call(handler, lambda client: client.create_session("AF070135F064641AG"), token="secret")

    assert session_id == "abc"
    assert seen["path"] == "/api/v1/signal/session"
    assert seen["headers"]["x-user-id"] == "188815492"
    assert seen["headers"]["authorization"] == "Bearer secret"
    assert seen["body"] == {"deviceId": "AF070135F064641AG", "deviceSn": "AF070135F064641AG"}


def test_create_session_accepts_unwrapped_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"sessionId": "plain"})

    assert call(handler, lambda client: client.create_session("dev")) == "plain"


@pytest.mark.parametrize(
    "response, status",
    [
        (httpx.Response(500, json={"error": "boom"}), 500),
        (httpx.Response(200, json={"code": 0, "data": {}}), None),
        (httpx.Response(200, text="<html>"), None),
    ],
)
def test_create_session_failures(response: httpx.Response, status) -> None:
    with pytest.raises(SessionApiError) as info:
        call(lambda request: response, lambda client: client.create_session("dev"))

    assert info.value.status_code == status


def test_transport_failure_is_a_session_api_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SessionApiError):
        call(handler, lambda client: client.session_status("abc"))


def test_session_status_is_passed_through() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path.endswith("/session/abc/status")
        return httpx.Response(200, json={"data": {"status": "connected", "vendor": 1}})

    assert call(handler, lambda client: client.session_status("abc")) == {"status": "connected", "vendor": 1}


def test_session_config_parses_payload() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "data": {
                    "stunServers": ["stun:10.1.1.1:3478"],
                    "turnServers": ["turn:10.1.1.1:3479"],
                    "rtcConfiguration": "{}",
                    "extraConfig": '{"keepAliveInterval": 4000}',
                }
            },
        )

    config = call(handler, lambda client: client.config_or_fallback("abc"))

    assert config.turn_servers == ("turn:10.1.1.1:3479",)
    assert config.keepalive_interval_ms == 4000
    assert describe(config)["fallback"] is False


@pytest.mark.parametrize(
    "status, body",
    [
        (500, {"error": "boom"}),
        (200, {"data": {"stunServers": "not-a-list"}}),
        (200, {"stunServers": ["stun:x"]}),
    ],
)
def test_config_failures_fall_back(status: int, body: dict) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json=body)

    with pytest.raises(ConfigFetchError):
        call(handler, lambda client: client.session_config("abc"))

    config = call(handler, lambda client: client.config_or_fallback("abc"))

    assert config is FALLBACK_CONFIGURATION
    assert describe(config)["keepAliveInterval"] == 10_000
