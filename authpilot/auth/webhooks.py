"""
Webhook event emitter: fire-and-forget owner notifications.

Every emitted event is appended to a bounded in-memory log and POSTed as
JSON to each registered webhook whose event filter matches. Delivery errors
are logged and never propagate to the caller.

Usage:
    hooks = WebhookService()
    hooks.add_webhook("https://example.com/hook", secret="s3cret")
    event = hooks.create_event("agent.registered", {"passport_id": pid, "name": name})
    delivered = await hooks.emit(event)
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-AuthPilot-Signature"
DELIVERY_TIMEOUT = 10.0
MAX_LOG_ENTRIES = 1000


@dataclass
class WebhookAction:
    type: str
    label: str
    url: str


@dataclass
class WebhookEvent:
    event: str
    timestamp: str
    agent: dict[str, str]
    data: dict[str, Any] = field(default_factory=dict)
    actions: list[WebhookAction] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class WebhookConfig:
    url: str
    secret: str | None = None
    events: list[str] | None = None  # None = all events

    def accepts(self, event_name: str) -> bool:
        return self.events is None or event_name in self.events


@dataclass
class DeliveryRecord:
    url: str
    event: str
    status: str  # "delivered" | "failed"
    detail: str = ""


def sign_payload(secret: str, body: bytes) -> str:
    """HMAC-SHA256 signature header value for a payload."""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


class WebhookService:
    """Registry of webhook endpoints plus an emit log."""

    def __init__(self, max_log_entries: int = MAX_LOG_ENTRIES) -> None:
        self._webhooks: list[WebhookConfig] = []
        self._event_log: deque[WebhookEvent] = deque(maxlen=max_log_entries)
        self._delivery_log: deque[DeliveryRecord] = deque(maxlen=max_log_entries)

    # ── Registry ──

    def add_webhook(
        self, url: str, secret: str | None = None, events: list[str] | None = None
    ) -> WebhookConfig:
        hook = WebhookConfig(url=url, secret=secret, events=events)
        self._webhooks.append(hook)
        return hook

    def remove_webhook(self, url: str) -> bool:
        before = len(self._webhooks)
        self._webhooks = [h for h in self._webhooks if h.url != url]
        return len(self._webhooks) < before

    def list_webhooks(self) -> list[WebhookConfig]:
        return list(self._webhooks)

    # ── Events ──

    def create_event(
        self,
        event: str,
        agent: dict[str, str],
        data: dict[str, Any] | None = None,
        actions: list[WebhookAction] | None = None,
    ) -> WebhookEvent:
        return WebhookEvent(
            event=event,
            timestamp=datetime.now(UTC).isoformat(),
            agent=dict(agent),
            data=dict(data or {}),
            actions=list(actions or []),
        )

    async def emit(self, event: WebhookEvent) -> int:
        """Log the event and deliver it to matching webhooks.

        Returns the number of successful deliveries. Never raises.
        """
        self._event_log.append(event)
        targets = [h for h in self._webhooks if h.accepts(event.event)]
        if not targets:
            logger.debug("Event %s logged (no webhooks)", event.event)
            return 0

        body = json.dumps(event.to_dict()).encode()
        delivered = 0
        try:
            async with httpx.AsyncClient(timeout=DELIVERY_TIMEOUT) as client:
                for hook in targets:
                    if await self._deliver(client, hook, event.event, body):
                        delivered += 1
        except Exception as e:
            logger.warning("Webhook client error for %s: %s", event.event, e)
        return delivered

    async def _deliver(
        self, client: httpx.AsyncClient, hook: WebhookConfig, event_name: str, body: bytes
    ) -> bool:
        headers = {"Content-Type": "application/json", "X-AuthPilot-Event": event_name}
        if hook.secret:
            headers[SIGNATURE_HEADER] = sign_payload(hook.secret, body)
        try:
            resp = await client.post(hook.url, content=body, headers=headers)
            resp.raise_for_status()
        except Exception as e:
            logger.warning("Webhook delivery to %s failed for %s: %s", hook.url, event_name, e)
            self._delivery_log.append(
                DeliveryRecord(url=hook.url, event=event_name, status="failed", detail=str(e))
            )
            return False
        self._delivery_log.append(
            DeliveryRecord(url=hook.url, event=event_name, status="delivered")
        )
        return True

    def get_event_log(self) -> list[WebhookEvent]:
        return list(self._event_log)

    def get_delivery_log(self) -> list[DeliveryRecord]:
        return list(self._delivery_log)
