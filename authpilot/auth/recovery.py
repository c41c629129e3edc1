"""
Error recovery: unrecoverable failures waiting on an owner decision.

The owner may retry, skip the step, or supply credentials manually.
"""

from __future__ import annotations

import base64
import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from authpilot.auth.webhooks import WebhookAction, WebhookService

logger = logging.getLogger(__name__)


class OwnerDecision(StrEnum):
    RETRY = "retry"
    SKIP = "skip"
    MANUAL = "manual"


ACTION_LABELS = {
    OwnerDecision.RETRY: "Retry Operation",
    OwnerDecision.SKIP: "Skip This Step",
    OwnerDecision.MANUAL: "Provide Manual Credentials",
}


@dataclass
class ManualCredentials:
    username: str | None = None
    password: str | None = None
    email: str | None = None
    token: str | None = None


@dataclass
class ErrorRecord:
    error_id: str
    agent_id: str
    agent_name: str
    service: str
    step: str
    error: str
    screenshot_url: str | None
    status: str = "pending_owner_action"
    actions: list[OwnerDecision] = field(default_factory=lambda: list(OwnerDecision))
    decision: OwnerDecision | None = None
    manual_credentials: ManualCredentials | None = None
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    resolved_at: str | None = None


@dataclass(frozen=True)
class ReportErrorResult:
    error_id: str
    actions: list[OwnerDecision]
    status: str = "pending_owner_action"


class ErrorRecoveryService:
    def __init__(self, webhooks: WebhookService, dashboard_url: str = "") -> None:
        self._webhooks = webhooks
        self._dashboard_url = dashboard_url.rstrip("/")
        self._errors: dict[str, ErrorRecord] = {}

    async def report_error(
        self,
        agent_id: str,
        agent_name: str,
        service: str,
        step: str,
        error: str,
        screenshot: bytes | None = None,
    ) -> ReportErrorResult:
        """Record the failure and emit ``agent.error`` with owner actions."""
        screenshot_url = None
        if screenshot:
            screenshot_url = "data:image/png;base64," + base64.b64encode(screenshot).decode()

        record = ErrorRecord(
            error_id=f"err_{secrets.token_hex(12)}",
            agent_id=agent_id,
            agent_name=agent_name,
            service=service,
            step=step,
            error=error,
            screenshot_url=screenshot_url,
        )
        self._errors[record.error_id] = record
        logger.warning(
            "Error %s reported for %s on %s (%s): %s",
            record.error_id,
            agent_id,
            service,
            step,
            error,
        )

        actions = [
            WebhookAction(
                type=action.value,
                label=ACTION_LABELS[action],
                url=f"{self._dashboard_url}/error/{record.error_id}/{action.value}",
            )
            for action in record.actions
        ]
        event = self._webhooks.create_event(
            "agent.error",
            {"passport_id": agent_id, "name": agent_name},
            {
                "error_id": record.error_id,
                "service": service,
                "step": step,
                "phase": step,
                "error": error,
                "screenshot_url": screenshot_url,
            },
            actions,
        )
        await self._webhooks.emit(event)
        return ReportErrorResult(error_id=record.error_id, actions=list(record.actions))

    def submit_decision(
        self,
        error_id: str,
        decision: OwnerDecision,
        manual_credentials: ManualCredentials | None = None,
    ) -> bool:
        record = self._errors.get(error_id)
        if record is None or record.status != "pending_owner_action":
            return False
        record.decision = OwnerDecision(decision)
        record.manual_credentials = manual_credentials
        record.status = "resolved"
        record.resolved_at = datetime.now(UTC).isoformat()
        return True

    def get_owner_decision(
        self, error_id: str
    ) -> tuple[OwnerDecision | None, ManualCredentials | None]:
        """(decision, manual_credentials), both None until the owner decides."""
        record = self._errors.get(error_id)
        if record is None or record.status != "resolved":
            return None, None
        return record.decision, record.manual_credentials

    def get_error(self, error_id: str) -> ErrorRecord | None:
        return self._errors.get(error_id)
