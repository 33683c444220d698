"""FCM adapter: request shape, error mapping and credential loading."""

import asyncio
import json

import httpx
import pytest
from google.auth.exceptions import RefreshError

from pushsched.common.config import ConfigurationError, SchedulerSettings
from pushsched.services.scheduler.gateway import (
    FcmGateway,
    GatewayError,
    load_credentials,
    signal_from_error,
    signal_from_exception,
)
from pushsched.services.scheduler.retry_policy import Disposition, FailureSignal, classify
from pushsched.services.scheduler.schemas import OutboundMessage


def _message() -> OutboundMessage:
    return OutboundMessage(
        topic="news",
        notification={"title": "X", "body": "Y"},
        data={"title": "X", "body": "Y"},
        android={"priority": "high", "notification": {"channel_id": "high_importance_channel"}},
        apns={"payload": {"aps": {"mutable-content": 1, "content-available": 1}}},
    )


async def _static_token() -> str:
    return "test-token"


def _send(handler, token_provider=_static_token) -> str:
    async def scenario() -> str:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        gateway = FcmGateway("demo", token_provider, client=client)
        try:
            return await gateway.send(_message())
        finally:
            await gateway.aclose()

    return asyncio.run(scenario())


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("RESOURCE_EXHAUSTED", FailureSignal.RESOURCE_EXHAUSTED),
        ("messaging/quota-exceeded", FailureSignal.QUOTA_EXCEEDED),
        ("unavailable", FailureSignal.UNAVAILABLE),
        ("UNREGISTERED", FailureSignal.UNREGISTERED),
        ("INVALID_ARGUMENT", FailureSignal.INVALID_ARGUMENT),
    ],
)
def test_known_codes_map_directly(code, expected):
    assert signal_from_error(code, "irrelevant") is expected


@pytest.mark.parametrize(
    ("message", "expected"),
    [
        ("HTTP 429 Too Many Requests", FailureSignal.QUOTA_EXCEEDED),
        ("Quota limit hit", FailureSignal.QUOTA_EXCEEDED),
        ("resources exhausted for project", FailureSignal.RESOURCE_EXHAUSTED),
        ("The service is currently UNAVAILABLE", FailureSignal.UNAVAILABLE),
        ("Deadline expired before operation could complete", FailureSignal.DEADLINE_EXCEEDED),
        ("Requested entity was not found.", FailureSignal.UNKNOWN),
    ],
)
def test_unknown_codes_fall_back_to_message_text(message, expected):
    assert signal_from_error("messaging/some-new-code", message) is expected


@pytest.mark.parametrize(
    ("code", "message", "expected"),
    [
        ("INTERNAL", "The service is currently unavailable, deadline exceeded", FailureSignal.UNAVAILABLE),
        ("INVALID_ARGUMENT", "HTTP 429 Too Many Requests", FailureSignal.QUOTA_EXCEEDED),
        ("NOT_FOUND", "Deadline expired before operation could complete", FailureSignal.DEADLINE_EXCEEDED),
    ],
)
def test_transient_message_overrides_fatal_code(code, message, expected):
    signal = signal_from_error(code, message)

    assert signal is expected
    assert classify(signal) is Disposition.RETRYABLE


def test_transient_code_wins_over_message_text():
    assert signal_from_error("UNAVAILABLE", "HTTP 429") is FailureSignal.UNAVAILABLE


def test_transport_exceptions_map_to_transient_signals():
    request = httpx.Request("POST", "https://fcm.googleapis.com")

    assert signal_from_exception(httpx.ReadTimeout("slow", request=request)) is FailureSignal.DEADLINE_EXCEEDED
    assert signal_from_exception(httpx.ConnectError("refused", request=request)) is FailureSignal.UNAVAILABLE
    assert signal_from_exception(RuntimeError("boom")) is FailureSignal.UNKNOWN


def test_send_posts_v1_message_and_returns_name():
    """Bearer token, project URL and `message` envelope follow the FCM v1 API."""

    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"name": "projects/demo/messages/123"})

    assert _send(handler) == "projects/demo/messages/123"
    assert seen["url"] == "https://fcm.googleapis.com/v1/projects/demo/messages:send"
    assert seen["auth"] == "Bearer test-token"
    assert seen["body"]["message"]["topic"] == "news"
    assert "token" not in seen["body"]["message"]


def test_fcm_error_detail_code_is_preferred():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404,
            json={
                "error": {
                    "code": 404,
                    "message": "Requested entity was not found.",
                    "status": "NOT_FOUND",
                    "details": [
                        {"@type": "type.googleapis.com/google.firebase.fcm.v1.FcmError", "errorCode": "UNREGISTERED"}
                    ],
                }
            },
        )

    with pytest.raises(GatewayError) as excinfo:
        _send(handler)

    assert excinfo.value.code == "UNREGISTERED"
    assert excinfo.value.status_code == 404
    assert signal_from_exception(excinfo.value) is FailureSignal.UNREGISTERED


def test_non_json_error_uses_http_status():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream connect error")

    with pytest.raises(GatewayError) as excinfo:
        _send(handler)

    assert signal_from_exception(excinfo.value) is FailureSignal.UNAVAILABLE


def test_token_refresh_failure_is_fatal_unauthenticated():
    async def broken_tokens() -> str:
        raise RefreshError("invalid_grant")

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected without a token")

    with pytest.raises(GatewayError) as excinfo:
        _send(handler, token_provider=broken_tokens)

    assert signal_from_exception(excinfo.value) is FailureSignal.UNAUTHENTICATED


@pytest.mark.parametrize("payload", ["{not json", "[]", '{"type": "service_account"}'])
def test_malformed_service_account_is_configuration_error(payload):
    settings = SchedulerSettings(firebase_project_id="demo", gcp_sa_json=payload)

    with pytest.raises(ConfigurationError):
        load_credentials(settings)


def test_delivered_message_with_unreadable_body_is_not_a_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="ok")

    assert _send(handler) == ""
