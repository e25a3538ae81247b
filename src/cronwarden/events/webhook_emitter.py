"""Signed webhook delivery of job events (HMAC-SHA256 over the JSON body)."""

import asyncio
import hashlib
import hmac
import json
import logging

import httpx

from cronwarden.integrations.ports import NotificationPort
from cronwarden.models.event import JobEvent, WebhookEnvelope

from .webhook_config import WebhookRegistry, WebhookSubscription

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-CronWarden-Signature"
EVENT_HEADER = "X-CronWarden-Event"


def sign_payload(body: bytes, secret: str) -> str:
    """Compute HMAC-SHA256 signature over the raw JSON body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def build_envelope(event: JobEvent, source_system: str = "cronwarden") -> WebhookEnvelope:
    """Wrap a job event for delivery. The signature is added per subscriber."""
    return WebhookEnvelope(
        schema_version="1.0",
        event_type=event.event_type,
        event_id=event.event_id,
        occurred_at=event.occurred_at,
        source_system=source_system,
        payload=event.model_dump(mode="json"),
    )


class WebhookNotifier(NotificationPort):
    """Notification port that fans events out to webhook subscribers."""

    adapter_type = "webhook"

    def __init__(
        self,
        registry: WebhookRegistry,
        max_attempts: int = 3,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.registry = registry
        self.max_attempts = max_attempts
        self.timeout = timeout
        self.transport = transport

    async def notify(self, event: JobEvent) -> None:
        for result in await self.emit(event):
            if result["error"]:
                logger.warning(
                    "Webhook %s for %s not delivered: %s",
                    event.event_type, result["url"], result["error"],
                )

    async def emit(self, event: JobEvent) -> list[dict]:
        """Deliver ``event`` to every matching subscriber.

        Returns a list of delivery results (url, status, error).
        """
        subscribers = self.registry.get_subscribers(event.event_type, event.job_id)
        if not subscribers:
            return []
        envelope = build_envelope(event)
        return list(await asyncio.gather(*(self._deliver(envelope, sub) for sub in subscribers)))

    async def _deliver(self, envelope: WebhookEnvelope, sub: WebhookSubscription) -> dict:
        """POST the signed envelope, retrying transport errors and 5xx responses."""
        body_dict = envelope.model_dump(mode="json", exclude={"signature"})
        unsigned = json.dumps(body_dict, separators=(",", ":")).encode("utf-8")
        signature = sign_payload(unsigned, sub.secret)
        body_dict["signature"] = signature
        signed_body = json.dumps(body_dict, separators=(",", ":")).encode("utf-8")

        headers = {
            "Content-Type": "application/json",
            SIGNATURE_HEADER: signature,
            EVENT_HEADER: envelope.event_type,
        }

        error = "max retries exceeded"
        status = None
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for _ in range(self.max_attempts):
                try:
                    resp = await client.post(sub.url, content=signed_body, headers=headers)
                except httpx.HTTPError as exc:
                    error = str(exc) or exc.__class__.__name__
                    continue
                status = resp.status_code
                if resp.status_code < 300:
                    return {"url": sub.url, "status": status, "error": None}
                error = f"HTTP {resp.status_code}"
                if resp.status_code < 500:
                    break
        return {"url": sub.url, "status": status, "error": error}
