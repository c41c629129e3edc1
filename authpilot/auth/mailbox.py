"""
Email collaborator contract plus an in-memory mailbox.

The orchestrator only needs three things from email: the agent's address,
a bounded wait for an inbound message, and the verification link inside it.
Production transports implement ``EmailCollaborator``; ``InMemoryMailbox``
serves local runs and tests.
"""

from __future__ import annotations

import asyncio
import html
import logging
import re
import time
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from authpilot.vault.passport import DEFAULT_EMAIL_DOMAIN, agent_email_address

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.2
MAX_EMAILS_PER_ADDRESS = 100

_LINK_KEYWORDS = r"(?:verif|confirm|activate|token|auth|callback)"
_HREF_LINK_RE = re.compile(
    r"""href=["']?(https?://[^\s"'<>]+""" + _LINK_KEYWORDS + r"""[^\s"'<>]*)""",
    re.IGNORECASE,
)
_TEXT_LINK_RE = re.compile(r"""https?://[^\s<>"']+""" + _LINK_KEYWORDS + r"""[^\s<>"']*""", re.I)
_ANY_URL_RE = re.compile(r"""https?://[^\s<>"']+""")
_TAG_RE = re.compile(r"<[^>]+>")
_OTP_PATTERNS = (
    re.compile(r"(?:code|otp|pin|token|password)\s*(?:is|:)\s*(\d{4,8})", re.I),
    re.compile(r"(\d{4,8})\s*(?:is your|is the)\s*(?:code|otp|pin|verification)", re.I),
    re.compile(r"\b(\d{4,8})\b"),
)


@dataclass
class IncomingEmail:
    to: str
    sender: str
    subject: str
    body: str
    html: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    received_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())


@runtime_checkable
class EmailCollaborator(Protocol):
    def get_email_address(self, agent_name: str) -> str: ...

    async def wait_for_email(
        self, address: str, timeout: float, sender: str | None = None
    ) -> IncomingEmail | None: ...

    def extract_verification_link(self, email_id: str) -> str | None: ...


class InMemoryMailbox:
    """Process-local mailbox keyed by lowercased recipient address."""

    def __init__(self, domain: str = DEFAULT_EMAIL_DOMAIN) -> None:
        self.domain = domain
        self._boxes: dict[str, deque[IncomingEmail]] = defaultdict(
            lambda: deque(maxlen=MAX_EMAILS_PER_ADDRESS)
        )

    def get_email_address(self, agent_name: str) -> str:
        return agent_email_address(agent_name, self.domain)

    def add_email(self, email: IncomingEmail) -> IncomingEmail:
        email.to = email.to.lower()
        email.sender = email.sender.lower()
        self._boxes[email.to].append(email)
        logger.debug("Mail for %s: %s", email.to, email.subject)
        return email

    def get_emails(self, address: str, sender: str | None = None) -> list[IncomingEmail]:
        emails = list(self._boxes.get(address.lower(), ()))
        if sender:
            needle = sender.lower()
            emails = [e for e in emails if needle in e.sender]
        return emails

    def get_email(self, email_id: str) -> IncomingEmail | None:
        for box in self._boxes.values():
            for email in box:
                if email.id == email_id:
                    return email
        return None

    async def wait_for_email(
        self, address: str, timeout: float, sender: str | None = None
    ) -> IncomingEmail | None:
        """Newest matching email, polling until ``timeout`` seconds pass."""
        deadline = time.monotonic() + timeout
        while True:
            matches = self.get_emails(address, sender)
            if matches:
                return matches[-1]
            if time.monotonic() >= deadline:
                logger.info("No email for %s within %.0fs", address, timeout)
                return None
            await asyncio.sleep(POLL_INTERVAL)

    def extract_verification_link(self, email_id: str) -> str | None:
        email = self.get_email(email_id)
        if email is None:
            return None
        if email.html:
            match = _HREF_LINK_RE.search(email.html)
            if match:
                return html.unescape(match.group(1))
        match = _TEXT_LINK_RE.search(email.body)
        if match:
            return match.group(0)
        if email.html:
            match = _ANY_URL_RE.search(email.html)
            if match:
                return html.unescape(match.group(0))
        match = _ANY_URL_RE.search(email.body)
        return match.group(0) if match else None

    def extract_otp_code(self, email_id: str) -> str | None:
        """A 4-8 digit code from the message, preferring labelled codes."""
        email = self.get_email(email_id)
        if email is None:
            return None
        text = html.unescape(_TAG_RE.sub(" ", email.html)) if email.html else email.body
        for pattern in _OTP_PATTERNS:
            match = pattern.search(text)
            if match:
                return match.group(1)
        return None

    def clear(self, address: str | None = None) -> None:
        if address:
            self._boxes.pop(address.lower(), None)
        else:
            self._boxes.clear()
