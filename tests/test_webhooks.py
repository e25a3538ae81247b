"""Tests for webhook event emission and signing."""

import hashlib
import hmac
import json
from datetime import datetime, timezone

import httpx
import pytest

from cronwarden.events.webhook_config import WebhookRegistry, WebhookSubscription
from cronwarden.events.webhook_emitter import (
    EVENT_HEADER,
    SIGNATURE_HEADER,
    WebhookNotifier,
    build_envelope,
    sign_payload,
)
from cronwarden.models.event import JobEvent


def _event(event_type: str = "job.saved", job_id: str = "job_abc") -> JobEvent:
    return JobEvent(
        event_id="evt_0123456789",
        event_type=event_type,
        job_id=job_id,
        actor="ops-bot",
        occurred_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
        details={"version": 2},
    )


def test_build_envelope():
    """Envelope has all required fields."""
    envelope = build_envelope(_event())
    assert envelope.event_type == "job.saved"
    assert envelope.source_system == "cronwarden"
    assert envelope.schema_version == "1.0"
    assert envelope.event_id == "evt_0123456789"
    assert envelope.payload["job_id"] == "job_abc"
    assert envelope.payload["details"] == {"version": 2}
    assert envelope.signature is None  # Unsigned until delivery


def test_sign_payload():
    """HMAC-SHA256 signature is correct."""
    body = b'{"test":"data"}'
    secret = "my-secret"
    sig = sign_payload(body, secret)
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    assert sig == expected


def test_webhook_registry():
    """Registry filters subscribers by event type and job."""
    registry = WebhookRegistry()
    sub_all = WebhookSubscription(url="http://a.com/hook", secret="s1")
    sub_specific = WebhookSubscription(
        url="http://b.com/hook", secret="s2", event_types=["deployment.failed"]
    )
    sub_one_job = WebhookSubscription(url="http://d.com/hook", secret="s4", job_ids=["job_abc"])
    sub_inactive = WebhookSubscription(url="http://c.com/hook", secret="s3", active=False)
    for sub in (sub_all, sub_specific, sub_one_job, sub_inactive):
        registry.register(sub)

    subs = registry.get_subscribers("deployment.failed", "job_abc")
    assert [s.url for s in subs] == ["http://a.com/hook", "http://b.com/hook", "http://d.com/hook"]

    subs = registry.get_subscribers("job.saved", "job_other")
    assert [s.url for s in subs] == ["http://a.com/hook"]


def test_webhook_registry_unregister():
    """Unregistering removes the subscription."""
    registry = WebhookRegistry.from_urls(["http://a.com/hook", "http://b.com/hook"], "s1")
    registry.unregister("http://a.com/hook")
    assert len(registry.list_all()) == 1
    assert registry.list_all()[0].url == "http://b.com/hook"


@pytest.mark.asyncio
async def test_delivery_is_signed_over_body_without_signature():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(204)

    registry = WebhookRegistry.from_urls(["http://hooks.test/cron"], "topsecret")
    notifier = WebhookNotifier(registry, transport=httpx.MockTransport(handler))

    results = await notifier.emit(_event())

    assert results == [{"url": "http://hooks.test/cron", "status": 204, "error": None}]
    request = received[0]
    assert request.headers[EVENT_HEADER] == "job.saved"
    body = json.loads(request.content)
    signature = body.pop("signature")
    unsigned = json.dumps(body, separators=(",", ":")).encode("utf-8")
    assert signature == sign_payload(unsigned, "topsecret")
    assert request.headers[SIGNATURE_HEADER] == signature


@pytest.mark.asyncio
async def test_server_errors_are_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(503 if len(attempts) < 3 else 200)

    notifier = WebhookNotifier(
        WebhookRegistry.from_urls(["http://hooks.test/cron"], "s"),
        transport=httpx.MockTransport(handler),
    )

    results = await notifier.emit(_event())

    assert len(attempts) == 3
    assert results[0]["error"] is None


@pytest.mark.asyncio
async def test_client_errors_are_not_retried():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        return httpx.Response(410)

    notifier = WebhookNotifier(
        WebhookRegistry.from_urls(["http://hooks.test/cron"], "s"),
        transport=httpx.MockTransport(handler),
    )

    results = await notifier.emit(_event())

    assert len(attempts) == 1
    assert results == [{"url": "http://hooks.test/cron", "status": 410, "error": "HTTP 410"}]


@pytest.mark.asyncio
async def test_notify_swallows_delivery_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = WebhookNotifier(
        WebhookRegistry.from_urls(["http://hooks.test/cron"], "s"),
        max_attempts=2,
        transport=httpx.MockTransport(handler),
    )

    await notifier.notify(_event())
    results = await notifier.emit(_event())
    assert results[0]["status"] is None
    assert "connection refused" in results[0]["error"]


@pytest.mark.asyncio
async def test_no_subscribers_means_no_requests():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    notifier = WebhookNotifier(WebhookRegistry(), transport=httpx.MockTransport(handler))
    assert await notifier.emit(_event()) == []
