"""Expo push gateway tests."""

import asyncio
import json
import logging

import httpx
import pytest

from darbna.core.errors import DeliveryError
from darbna.services.push_gateway import ExpoPushGateway, PushMessage, PushToken

TOKEN = "ExponentPushToken[xxxxxxxxxxxxxxxxxxxxxx]"


def _message(token=TOKEN, body="hello"):
    return PushMessage(to=PushToken(token), title="t", body=body)


@pytest.mark.parametrize(
    "raw",
    [
        TOKEN,
        "ExpoPushToken[abc]",
        "F5741A13-BCDA-434B-A316-5DC0E6FFA94F",
    ],
)
def test_valid_tokens(raw):
    assert PushToken.validate(raw)
    assert str(PushToken(raw)) == raw


@pytest.mark.parametrize("raw", [None, "", "ExponentPushToken[]", "ExponentPushToken", "abc", 42])
def test_invalid_tokens(raw):
    assert not PushToken.validate(raw)


def test_invalid_token_cannot_be_constructed():
    with pytest.raises(ValueError):
        PushToken("nope")


def test_chunk_respects_batch_size_and_hard_limit():
    gateway = ExpoPushGateway(batch_size=3)
    batches = gateway.chunk([_message(body=str(i)) for i in range(7)])
    assert [len(b) for b in batches] == [3, 3, 1]
    assert [m.body for m in batches[2]] == ["6"]

    assert ExpoPushGateway(batch_size=500).batch_size == 100


def test_send_batch_posts_messages_and_returns_tickets():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"status": "ok", "id": "t-1"}]})

    gateway = ExpoPushGateway(access_token="secret", transport=httpx.MockTransport(handler))
    tickets = asyncio.run(gateway.send_batch([_message()]))

    assert tickets == [{"status": "ok", "id": "t-1"}]
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == [
        {"to": TOKEN, "title": "t", "body": "hello", "data": {}, "sound": "default", "badge": 1}
    ]


def test_error_tickets_are_logged(caplog):
    def handler(request):
        ticket = {"status": "error", "message": "not registered", "details": {"error": "DeviceNotRegistered"}}
        return httpx.Response(200, json={"data": [ticket]})

    gateway = ExpoPushGateway(access_token="", transport=httpx.MockTransport(handler))
    with caplog.at_level(logging.WARNING, logger="darbna.services.push_gateway"):
        tickets = asyncio.run(gateway.send_batch([_message()]))

    assert tickets[0]["status"] == "error"
    assert "DeviceNotRegistered" in caplog.text


def test_server_error_raises_delivery_error():
    gateway = ExpoPushGateway(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(gateway.send_batch([_message()]))
    assert exc_info.value.channel == "push"


def test_timeout_raises_delivery_error():
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    gateway = ExpoPushGateway(transport=httpx.MockTransport(handler))
    with pytest.raises(DeliveryError):
        asyncio.run(gateway.send_batch([_message()]))


def test_unparseable_body_raises_delivery_error():
    gateway = ExpoPushGateway(transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>")))
    with pytest.raises(DeliveryError):
        asyncio.run(gateway.send_batch([_message()]))
