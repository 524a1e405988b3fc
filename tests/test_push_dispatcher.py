import json
from datetime import datetime, timezone

import pytest
from pywebpush import WebPushException

from conftest import FakeTransport, make_subscriber
from core.errors import PushTransportError
from models.schemas import DeliveryStatus
from services import push_dispatcher
from services.composer import compose_reminder
from services.push_dispatcher import PushDispatcher, WebPushTransport

PAYLOAD = compose_reminder(datetime(2026, 10, 16, 9, 0, tzinfo=timezone.utc))


def _url(n):
    return f"https://push.example.com/send/{n}"


@pytest.mark.asyncio
async def test_success_is_delivered_and_sends_payload_json():
    transport = FakeTransport()
    outcome = await PushDispatcher(transport).dispatch(make_subscriber(1), PAYLOAD)
    assert outcome.status == DeliveryStatus.DELIVERED
    assert outcome.status_code == 201
    assert transport.sent == [(_url(1), PAYLOAD.to_json())]


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [404, 410])
async def test_gone_endpoint_is_expired(code):
    transport = FakeTransport(statuses={_url(1): code})
    outcome = await PushDispatcher(transport).dispatch(make_subscriber(1), PAYLOAD)
    assert outcome.status == DeliveryStatus.EXPIRED
    assert outcome.error is None


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [400, 413, 429, 500, 503])
async def test_other_status_is_failed_with_detail(code):
    transport = FakeTransport(statuses={_url(1): code})
    outcome = await PushDispatcher(transport).dispatch(make_subscriber(1), PAYLOAD)
    assert outcome.status == DeliveryStatus.FAILED
    assert str(code) in outcome.error
    assert len(transport.sent) == 1  # no retry


@pytest.mark.asyncio
async def test_transport_exception_is_failed():
    transport = FakeTransport(errors={_url(1): ConnectionError("connection reset")})
    outcome = await PushDispatcher(transport).dispatch(make_subscriber(1), PAYLOAD)
    assert outcome.status == DeliveryStatus.FAILED
    assert outcome.error == "connection reset"


@pytest.mark.asyncio
async def test_missing_endpoint_fails_without_calling_transport():
    transport = FakeTransport()
    outcome = await PushDispatcher(transport).dispatch(make_subscriber(1, push_subscription=None), PAYLOAD)
    assert outcome.status == DeliveryStatus.FAILED
    assert transport.sent == []


@pytest.mark.asyncio
async def test_json_string_endpoint_is_accepted():
    transport = FakeTransport()
    raw = json.dumps({"endpoint": _url(7), "keys": {"p256dh": "x", "auth": "y"}})
    outcome = await PushDispatcher(transport).dispatch(make_subscriber(7, push_subscription=raw), PAYLOAD)
    assert outcome.status == DeliveryStatus.DELIVERED


@pytest.mark.asyncio
async def test_fan_out_respects_concurrency_limit():
    transport = FakeTransport(delay=0.01)
    dispatcher = PushDispatcher(transport, concurrency=3)
    outcomes = await dispatcher.dispatch_all([make_subscriber(n) for n in range(12)], PAYLOAD)
    assert len(outcomes) == 12
    assert all(o.status == DeliveryStatus.DELIVERED for o in outcomes)
    assert transport.max_in_flight == 3


@pytest.mark.asyncio
async def test_fan_out_isolates_failures():
    transport = FakeTransport(errors={_url(2): RuntimeError("boom")}, statuses={_url(3): 410})
    outcomes = await PushDispatcher(transport).dispatch_all([make_subscriber(n) for n in range(1, 5)], PAYLOAD)
    by_id = {o.subscriber_id: o.status for o in outcomes}
    assert by_id == {
        "user-001": DeliveryStatus.DELIVERED,
        "user-002": DeliveryStatus.FAILED,
        "user-003": DeliveryStatus.EXPIRED,
        "user-004": DeliveryStatus.DELIVERED,
    }


class _Response:
    def __init__(self, status_code):
        self.status_code = status_code
        self.text = ""


@pytest.mark.asyncio
async def test_webpush_transport_returns_status_from_exception(monkeypatch):
    calls = []

    def fake_webpush(**kwargs):
        calls.append(kwargs)
        raise WebPushException("Push failed: 410 Gone", response=_Response(410))

    monkeypatch.setattr(push_dispatcher, "webpush", fake_webpush)
    transport = WebPushTransport(private_key="private-key", subject="mailto:ops@example.com")
    status = await transport.send({"endpoint": _url(1)}, PAYLOAD.to_json())
    assert status == 410
    assert calls[0]["vapid_claims"] == {"sub": "mailto:ops@example.com"}
    assert calls[0]["data"] == PAYLOAD.to_json()


@pytest.mark.asyncio
async def test_webpush_transport_success(monkeypatch):
    monkeypatch.setattr(push_dispatcher, "webpush", lambda **kwargs: _Response(201))
    transport = WebPushTransport(private_key="private-key", subject="mailto:ops@example.com")
    assert await transport.send({"endpoint": _url(1)}, "{}") == 201


@pytest.mark.asyncio
async def test_webpush_transport_without_response_raises(monkeypatch):
    def fake_webpush(**kwargs):
        raise WebPushException("connection refused")

    monkeypatch.setattr(push_dispatcher, "webpush", fake_webpush)
    transport = WebPushTransport(private_key="private-key", subject="mailto:ops@example.com")
    with pytest.raises(PushTransportError):
        await transport.send({"endpoint": _url(1)}, "{}")


@pytest.mark.asyncio
async def test_webpush_transport_without_key_is_a_failed_dispatch():
    dispatcher = PushDispatcher(WebPushTransport(private_key=None, subject="mailto:ops@example.com"))
    outcome = await dispatcher.dispatch(make_subscriber(1), PAYLOAD)
    assert outcome.status == DeliveryStatus.FAILED
    assert "VAPID" in outcome.error
