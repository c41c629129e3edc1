"""
authpilot auth: the fallback authentication orchestrator and its collaborators.

    FallbackAuthService   session reuse → stored-credential login → registration
    SessionService        in-memory sessions with expiry
    WebhookService        owner notifications (HMAC-signed HTTP POST)
    CaptchaService        human escalation for CAPTCHA challenges
    ErrorRecoveryService  owner decisions after exhausted retries
"""

from __future__ import annotations

from authpilot.auth.captcha import CaptchaService, EscalateResult, EscalationStatus
from authpilot.auth.fallback import (
    AuthFlowResult,
    AuthMethod,
    FallbackAuthService,
    extract_domain,
    generate_password,
)
from authpilot.auth.identity import IdentityService
from authpilot.auth.mailbox import EmailCollaborator, InMemoryMailbox, IncomingEmail
from authpilot.auth.recovery import ErrorRecoveryService, OwnerDecision
from authpilot.auth.retry import RetryEvent, RetryMachine, RetryState
from authpilot.auth.session import Session, SessionService
from authpilot.auth.webhooks import WebhookEvent, WebhookService

__all__ = [
    "AuthFlowResult",
    "AuthMethod",
    "CaptchaService",
    "EmailCollaborator",
    "ErrorRecoveryService",
    "EscalateResult",
    "EscalationStatus",
    "FallbackAuthService",
    "IdentityService",
    "InMemoryMailbox",
    "IncomingEmail",
    "OwnerDecision",
    "RetryEvent",
    "RetryMachine",
    "RetryState",
    "Session",
    "SessionService",
    "WebhookEvent",
    "WebhookService",
    "extract_domain",
    "generate_password",
]
