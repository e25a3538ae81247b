"""Webhook subscriptions for job lifecycle events."""

from dataclasses import dataclass, field


@dataclass
class WebhookSubscription:
    """A registered webhook endpoint.

    Empty ``event_types`` or ``job_ids`` mean "all".
    """

    url: str
    secret: str
    event_types: list[str] = field(default_factory=list)
    job_ids: list[str] = field(default_factory=list)
    active: bool = True

    def wants(self, event_type: str, job_id: str) -> bool:
        if not self.active:
            return False
        if self.event_types and event_type not in self.event_types:
            return False
        return not self.job_ids or job_id in self.job_ids


class WebhookRegistry:
    """In-memory registry, seeded from settings at startup."""

    def __init__(self, subscriptions: list[WebhookSubscription] | None = None) -> None:
        self._subscriptions: list[WebhookSubscription] = list(subscriptions or [])

    @classmethod
    def from_urls(cls, urls: list[str], secret: str) -> "WebhookRegistry":
        return cls([WebhookSubscription(url=url, secret=secret) for url in urls])

    def register(self, subscription: WebhookSubscription) -> None:
        self._subscriptions.append(subscription)

    def unregister(self, url: str) -> None:
        self._subscriptions = [s for s in self._subscriptions if s.url != url]

    def get_subscribers(self, event_type: str, job_id: str) -> list[WebhookSubscription]:
        return [s for s in self._subscriptions if s.wants(event_type, job_id)]

    def list_all(self) -> list[WebhookSubscription]:
        return list(self._subscriptions)
