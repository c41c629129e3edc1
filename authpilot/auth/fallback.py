"""
Fallback authentication orchestrator.

Answers "authenticate this agent on this service" with one normalized result:

    1. Resolve the agent identity (unknown → failure, no I/O beyond the vault)
    2. Reuse a live session (no browser at all)
    3. Log in with the credential this agent stored for the service
    4. Register a new account when the agent has none

Login and registration share one retry policy (``RetryMachine``): plain
errors are retried up to ``max_retries`` times, a CAPTCHA stops immediately
and is escalated to the owner. Calls for the same (agent, service) pair are
single-flighted. An optional ``timeout`` bounds the whole flow.

Usage:
    service = FallbackAuthService(identities, vault, sessions, webhooks, captcha, browser)
    result = await service.authenticate_on_service("ap_abc123def456", "github.com", timeout=120)
    print(result.to_dict())
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any
from urllib.parse import urlsplit

from authpilot.auth.captcha import CaptchaService
from authpilot.auth.identity import IdentityService
from authpilot.auth.locks import KeyedLocks
from authpilot.auth.mailbox import EmailCollaborator
from authpilot.auth.recovery import ErrorRecoveryService
from authpilot.auth.retry import MAX_RETRIES, RetryEvent, RetryMachine, RetryState
from authpilot.auth.session import DEFAULT_TTL_SECONDS, SessionService
from authpilot.auth.webhooks import WebhookService
from authpilot.browser.base import (
    BrowserOperations,
    LoginResult,
    RegistrationOptions,
    RegistrationResult,
)
from authpilot.vault.models import Credential, StoredIdentity
from authpilot.vault.store import CredentialVault, credential_key

logger = logging.getLogger(__name__)

GENERATED_PASSWORD_LENGTH = 24
PASSWORD_ALPHABET = string.ascii_letters + string.digits + "!@#$%^&*"
DEFAULT_EMAIL_WAIT_TIMEOUT = 30.0


class AuthMethod(StrEnum):
    SESSION_REUSE = "session_reuse"
    FALLBACK_LOGIN = "fallback_login"
    FALLBACK_REGISTER = "fallback_register"


@dataclass
class AuthFlowResult:
    success: bool
    method: AuthMethod
    service: str
    passport_id: str
    retries_used: int = 0
    session: dict[str, str | None] | None = None
    error: str | None = None
    needs_human: bool = False
    captcha_type: str | None = None
    escalation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready view; unset optional fields are omitted."""
        data = asdict(self)
        data["method"] = self.method.value
        for key in ("session", "error", "captcha_type", "escalation_id"):
            if data[key] is None:
                del data[key]
        if not self.needs_human:
            del data["needs_human"]
        return data


# ─── Helpers ─────────────────────────────────────────────────────────


def extract_domain(url: str) -> str:
    """Host part of a URL; a bare host without a scheme is accepted."""
    candidate = url.strip()
    if "://" not in candidate:
        candidate = f"https://{candidate}"
    try:
        host = urlsplit(candidate).hostname
    except ValueError:
        return url
    return host or url


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def _agent_info(identity: StoredIdentity) -> dict[str, str]:
    return {"passport_id": identity.passport.passport_id, "name": identity.passport.identity.name}


# ─── Service ─────────────────────────────────────────────────────────


class FallbackAuthService:
    def __init__(
        self,
        identities: IdentityService,
        vault: CredentialVault,
        sessions: SessionService,
        webhooks: WebhookService,
        captcha: CaptchaService,
        browser: BrowserOperations,
        mailbox: EmailCollaborator | None = None,
        recovery: ErrorRecoveryService | None = None,
        *,
        max_retries: int = MAX_RETRIES,
        session_ttl: float = DEFAULT_TTL_SECONDS,
        email_wait_timeout: float = DEFAULT_EMAIL_WAIT_TIMEOUT,
    ) -> None:
        self._identities = identities
        self._vault = vault
        self._sessions = sessions
        self._webhooks = webhooks
        self._captcha = captcha
        self._browser = browser
        self._mailbox = mailbox
        self._recovery = recovery
        self._max_retries = max_retries
        self._session_ttl = session_ttl
        self._email_wait_timeout = email_wait_timeout
        self._locks = KeyedLocks()

    async def authenticate_on_service(
        self, agent_id: str, url: str, *, timeout: float | None = None
    ) -> AuthFlowResult:
        """Authenticate ``agent_id`` on the service behind ``url``.

        Never raises for automation failures; ``DecryptionError`` from the
        vault propagates.
        """
        service = extract_domain(url)
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                return await self._authenticate(agent_id, service)
        except TimeoutError:
            if not deadline.expired():
                raise
            logger.warning(
                "Authentication of %s on %s timed out after %ss", agent_id, service, timeout
            )
            return AuthFlowResult(
                success=False,
                method=AuthMethod.FALLBACK_LOGIN,
                service=service,
                passport_id=agent_id,
                error=f"Timed out after {timeout:g}s",
            )

    async def _authenticate(self, agent_id: str, service: str) -> AuthFlowResult:
        identity = await self._identities.get_active_identity(agent_id)
        if identity is None:
            logger.info("Unknown agent %s", agent_id)
            return AuthFlowResult(
                success=False,
                method=AuthMethod.FALLBACK_LOGIN,
                service=service,
                passport_id=agent_id,
                error=f"Identity not found: {agent_id}",
            )

        async with self._locks.hold((agent_id, service)):
            session = self._sessions.get_session(agent_id, service)
            if session is not None:
                logger.debug("Reusing session for %s on %s", agent_id, service)
                return AuthFlowResult(
                    success=True,
                    method=AuthMethod.SESSION_REUSE,
                    service=service,
                    passport_id=agent_id,
                    session={"token": session.token, "cookies": session.cookies},
                )

            credential = await self._vault.get(credential_key(agent_id, service))
            if credential is not None:
                return await self.attempt_login(identity, service, credential)
            return await self.attempt_registration(identity, service)

    # ─── Login ───────────────────────────────────────────────────────

    async def attempt_login(
        self, identity: StoredIdentity, service: str, credential: Credential
    ) -> AuthFlowResult:
        agent_id = identity.passport.passport_id
        agent = _agent_info(identity)
        login_url = f"https://{service}/login"
        machine = RetryMachine(self._max_retries)
        machine.fire(RetryEvent.START)
        last: LoginResult | None = None

        while machine.state == RetryState.ATTEMPTING:
            last = await self._browser.login(
                login_url, {"username": credential.username, "password": credential.password}
            )

            if last.captcha_detected:
                machine.fire(RetryEvent.CAPTCHA)
                return await self._escalate(
                    machine, identity, service, AuthMethod.FALLBACK_LOGIN, "login", last
                )

            if last.success:
                machine.fire(RetryEvent.SUCCESS)
                session = self._sessions.create_session(
                    agent_id,
                    service,
                    token=last.session_token,
                    cookies=last.cookies,
                    ttl=self._session_ttl,
                )
                await self._emit(
                    "agent.logged_in",
                    agent,
                    {
                        "service": service,
                        "method": "fallback_login",
                        "retries": machine.retries_used,
                    },
                )
                logger.info(
                    "Logged in %s on %s (retries=%d)", agent_id, service, machine.retries_used
                )
                return AuthFlowResult(
                    success=True,
                    method=AuthMethod.FALLBACK_LOGIN,
                    service=service,
                    passport_id=agent_id,
                    retries_used=machine.retries_used,
                    session={"token": session.token, "cookies": session.cookies},
                )

            machine.fire(RetryEvent.ERROR)
            logger.info(
                "Login attempt %d for %s on %s failed: %s",
                machine.attempt + 1,
                agent_id,
                service,
                last.error,
            )
            machine.after_failure()

        error = (last.error if last else None) or "Login failed after max retries"
        await self._emit(
            "agent.login_failed",
            agent,
            {"service": service, "error": error, "retries": machine.retries_used},
        )
        await self._report(identity, service, "login", error, last.screenshot if last else None)
        return AuthFlowResult(
            success=False,
            method=AuthMethod.FALLBACK_LOGIN,
            service=service,
            passport_id=agent_id,
            retries_used=machine.retries_used,
            error=error,
        )

    # ─── Registration ────────────────────────────────────────────────

    async def attempt_registration(self, identity: StoredIdentity, service: str) -> AuthFlowResult:
        agent_id = identity.passport.passport_id
        agent = _agent_info(identity)
        email = self._email_for(identity)
        password = generate_password()
        options: RegistrationOptions = {"email": email, "password": password, "name": agent["name"]}
        signup_url = f"https://{service}/signup"
        machine = RetryMachine(self._max_retries)
        machine.fire(RetryEvent.START)
        last: RegistrationResult | None = None

        while machine.state == RetryState.ATTEMPTING:
            last = await self._browser.register(signup_url, options)

            if last.captcha_detected:
                machine.fire(RetryEvent.CAPTCHA)
                return await self._escalate(
                    machine, identity, service, AuthMethod.FALLBACK_REGISTER, "registration", last
                )

            if last.success:
                machine.fire(RetryEvent.SUCCESS)
                if last.needs_email_verification:
                    await self._verify_email(email, service)

                registered = last.credentials or {
                    "username": email,
                    "password": password,
                    "email": email,
                }
                await self._vault.store(
                    Credential(
                        service=credential_key(agent_id, service),
                        username=registered["username"],
                        password=registered["password"],
                        email=registered["email"],
                    )
                )
                await self._emit("agent.credential_stored", agent, {"service": service})
                await self._emit(
                    "agent.registered",
                    agent,
                    {
                        "service": service,
                        "method": "fallback_register",
                        "retries": machine.retries_used,
                    },
                )
                session = self._sessions.create_session(agent_id, service, ttl=self._session_ttl)
                logger.info(
                    "Registered %s on %s (retries=%d)", agent_id, service, machine.retries_used
                )
                return AuthFlowResult(
                    success=True,
                    method=AuthMethod.FALLBACK_REGISTER,
                    service=service,
                    passport_id=agent_id,
                    retries_used=machine.retries_used,
                    session={"token": session.token, "cookies": session.cookies},
                )

            machine.fire(RetryEvent.ERROR)
            logger.info(
                "Registration attempt %d for %s on %s failed: %s",
                machine.attempt + 1,
                agent_id,
                service,
                last.error,
            )
            machine.after_failure()

        error = (last.error if last else None) or "Registration failed after max retries"
        screenshot = last.screenshot if last else None
        if self._recovery is not None:
            # Recovery emits agent.error itself
            await self._report(identity, service, "registration", error, screenshot)
        else:
            await self._emit(
                "agent.error",
                agent,
                {
                    "service": service,
                    "error": error,
                    "phase": "registration",
                    "retries": machine.retries_used,
                },
            )
        return AuthFlowResult(
            success=False,
            method=AuthMethod.FALLBACK_REGISTER,
            service=service,
            passport_id=agent_id,
            retries_used=machine.retries_used,
            error=error,
        )

    async def _verify_email(self, email: str, service: str) -> None:
        """Wait for the verification mail once and visit its link.

        Registration counts as successful either way.
        """
        if self._mailbox is None:
            logger.warning("%s requires email verification but no mailbox is configured", service)
            return
        try:
            incoming = await self._mailbox.wait_for_email(email, self._email_wait_timeout)
            if incoming is None:
                logger.warning("Verification email for %s on %s never arrived", email, service)
                return
            link = self._mailbox.extract_verification_link(incoming.id)
            if not link:
                logger.warning("No verification link in email %s", incoming.id)
                return
            result = await self._browser.login(link, {"username": "", "password": ""})
            logger.info("Visited verification link for %s (success=%s)", service, result.success)
        except Exception as e:
            logger.warning("Email verification for %s failed: %s", service, e)

    # ─── Shared ──────────────────────────────────────────────────────

    async def _escalate(
        self,
        machine: RetryMachine,
        identity: StoredIdentity,
        service: str,
        method: AuthMethod,
        phase: str,
        result: LoginResult | RegistrationResult,
    ) -> AuthFlowResult:
        agent_id = identity.passport.passport_id
        captcha_type = result.captcha_type or "unknown"
        escalation = await self._captcha.escalate(
            agent_id,
            service,
            captcha_type,
            result.screenshot,
            agent_name=identity.passport.identity.name,
            phase=phase,
        )
        machine.fire(RetryEvent.ESCALATE)
        logger.warning(
            "CAPTCHA (%s) during %s on %s for %s; escalated as %s",
            captcha_type,
            phase,
            service,
            agent_id,
            escalation.escalation_id,
        )
        return AuthFlowResult(
            success=False,
            method=method,
            service=service,
            passport_id=agent_id,
            retries_used=machine.retries_used,
            error=result.error or f"CAPTCHA detected during {phase}",
            needs_human=True,
            captcha_type=result.captcha_type,
            escalation_id=escalation.escalation_id,
        )

    async def _report(
        self,
        identity: StoredIdentity,
        service: str,
        step: str,
        error: str,
        screenshot: bytes | None,
    ) -> None:
        if self._recovery is None:
            return
        await self._recovery.report_error(
            identity.passport.passport_id,
            identity.passport.identity.name,
            service,
            step,
            error,
            screenshot,
        )

    async def _emit(self, event: str, agent: dict[str, str], data: dict[str, Any]) -> None:
        try:
            await self._webhooks.emit(self._webhooks.create_event(event, agent, data))
        except Exception as e:
            logger.warning("Failed to emit %s: %s", event, e)

    def _email_for(self, identity: StoredIdentity) -> str:
        if self._mailbox is not None:
            return self._mailbox.get_email_address(identity.passport.identity.name)
        email = identity.passport.capabilities.email
        if email is not None:
            return email.address
        return identity.passport.owner.email
