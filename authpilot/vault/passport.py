"""
Agent passports and Ed25519 key pairs.

Passport ids have the form ap_<12 hex chars>. Every passport gets a derived
inbound email address so the agent can receive verification mail.
"""

from __future__ import annotations

import re
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from authpilot.vault.crypto import b64url_encode
from authpilot.vault.models import (
    Passport,
    PassportCapabilities,
    PassportEmail,
    PassportIdentity,
    PassportOwner,
)

DEFAULT_EMAIL_DOMAIN = "agent-mail.xyz"


@dataclass(frozen=True)
class KeyPair:
    """Raw Ed25519 key material, base64url encoded."""

    private_key: str
    public_key: str


def generate_key_pair() -> KeyPair:
    """Generate a fresh Ed25519 key pair."""
    private = Ed25519PrivateKey.generate()
    private_raw = private.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_raw = private.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return KeyPair(private_key=b64url_encode(private_raw), public_key=b64url_encode(public_raw))


def generate_passport_id() -> str:
    return f"ap_{secrets.token_hex(6)}"


def agent_email_address(agent_name: str, domain: str = DEFAULT_EMAIL_DOMAIN) -> str:
    """Derive a mailbox address from the agent name (lowercase alnum + hyphens)."""
    sanitized = re.sub(r"[^a-z0-9-]", "-", agent_name.lower())
    sanitized = re.sub(r"-+", "-", sanitized).strip("-")
    return f"{sanitized or 'agent'}@{domain}"


def create_passport(
    name: str,
    public_key: str,
    owner_email: str,
    description: str = "",
    email_domain: str = DEFAULT_EMAIL_DOMAIN,
) -> Passport:
    """Build a new unverified passport for an agent."""
    return Passport(
        passport_id=generate_passport_id(),
        identity=PassportIdentity(
            name=name,
            description=description,
            public_key=public_key,
            created_at=datetime.now(UTC).isoformat(),
        ),
        owner=PassportOwner(id=str(uuid.uuid4()), email=owner_email),
        capabilities=PassportCapabilities(
            email=PassportEmail(address=agent_email_address(name, email_domain)),
        ),
    )
