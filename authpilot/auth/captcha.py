"""
CAPTCHA escalation: hands a detected challenge to the owner.

Automation never attempts to solve a CAPTCHA. ``escalate`` records a pending
escalation, notifies the owner through webhooks and the chat relay, and
returns an id the caller can poll. Escalations time out after
``timeout_seconds`` (default 5 minutes) if nobody resolves them. Records older
than ``RETENTION_FACTOR`` timeouts are finished either way and are dropped
whenever a new escalation is created.
"""

from __future__ import annotations

import base64
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from authpilot.auth import relay
from authpilot.auth.webhooks import WebhookAction, WebhookService

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_DASHBOARD_URL = "https://dashboard.authpilot.local"
RETENTION_FACTOR = 2


class EscalationStatus(StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"
    TIMED_OUT = "timed_out"


@dataclass
class CaptchaEscalation:
    id: str
    agent_id: str
    service: str
    captcha_type: str
    screenshot: bytes | None
    status: EscalationStatus
    created_at: str
    created_monotonic: float
    resolved_at: str | None = None

    @property
    def screenshot_url(self) -> str | None:
        if not self.screenshot:
            return None
        return "data:image/png;base64," + base64.b64encode(self.screenshot).decode()


@dataclass(frozen=True)
class EscalateResult:
    escalation_id: str
    status: str = EscalationStatus.PENDING


@dataclass(frozen=True)
class ResolutionResult:
    resolved: bool
    timed_out: bool = False


def generate_escalation_id() -> str:
    return f"esc_{secrets.token_hex(12)}"


class CaptchaService:
    """Pending CAPTCHA escalations kept in memory."""

    def __init__(
        self,
        webhooks: WebhookService,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        dashboard_url: str = DEFAULT_DASHBOARD_URL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._webhooks = webhooks
        self._timeout = timeout_seconds
        self._dashboard_url = dashboard_url.rstrip("/")
        self._clock = clock
        self._escalations: dict[str, CaptchaEscalation] = {}

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    async def escalate(
        self,
        agent_id: str,
        service: str,
        captcha_type: str,
        screenshot: bytes | None = None,
        agent_name: str = "",
        phase: str | None = None,
    ) -> EscalateResult:
        """Create a pending escalation and notify the owner.

        ``phase`` ("login" or "registration") is passed through to the event.
        """
        self._prune()
        record = CaptchaEscalation(
            id=generate_escalation_id(),
            agent_id=agent_id,
            service=service,
            captcha_type=captcha_type,
            screenshot=screenshot,
            status=EscalationStatus.PENDING,
            created_at=datetime.now(UTC).isoformat(),
            created_monotonic=self._clock(),
        )
        self._escalations[record.id] = record
        logger.info(
            "CAPTCHA escalation %s: agent=%s service=%s type=%s",
            record.id,
            agent_id,
            service,
            captcha_type,
        )

        solve_url = f"{self._dashboard_url}/solve/{record.id}"
        data = {
            "escalation_id": record.id,
            "service": service,
            "captcha_type": captcha_type,
            "screenshot_url": record.screenshot_url,
        }
        if phase:
            data["phase"] = phase
        event = self._webhooks.create_event(
            "agent.captcha_needed",
            {"passport_id": agent_id, "name": agent_name},
            data,
            [WebhookAction(type="solve", label="Solve CAPTCHA", url=solve_url)],
        )
        await self._webhooks.emit(event)
        await relay.relay(
            f"CAPTCHA on {service} ({captcha_type}) for agent {agent_name or agent_id}.\n"
            f"Solve: {solve_url}"
        )

        return EscalateResult(escalation_id=record.id)

    def _prune(self) -> None:
        cutoff = self._clock() - self._timeout * RETENTION_FACTOR
        expired = [k for k, r in self._escalations.items() if r.created_monotonic < cutoff]
        for escalation_id in expired:
            del self._escalations[escalation_id]
        if expired:
            logger.debug("Dropped %d finished CAPTCHA escalations", len(expired))

    def get_escalation(self, escalation_id: str) -> CaptchaEscalation | None:
        return self._escalations.get(escalation_id)

    def check_resolution(self, escalation_id: str) -> ResolutionResult:
        """Current status; pending escalations past the timeout become timed_out."""
        record = self._escalations.get(escalation_id)
        if record is None:
            return ResolutionResult(resolved=False)
        if record.status == EscalationStatus.RESOLVED:
            return ResolutionResult(resolved=True)
        if record.status == EscalationStatus.TIMED_OUT:
            return ResolutionResult(resolved=False, timed_out=True)

        if self._clock() - record.created_monotonic >= self._timeout:
            record.status = EscalationStatus.TIMED_OUT
            logger.info("CAPTCHA escalation %s timed out", escalation_id)
            return ResolutionResult(resolved=False, timed_out=True)
        return ResolutionResult(resolved=False)

    def resolve(self, escalation_id: str) -> bool:
        """Mark a pending escalation as solved by the owner."""
        record = self._escalations.get(escalation_id)
        if record is None or record.status != EscalationStatus.PENDING:
            return False
        record.status = EscalationStatus.RESOLVED
        record.resolved_at = datetime.now(UTC).isoformat()
        return True
