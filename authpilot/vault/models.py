"""Vault data models.

Records are serialized to JSON, encrypted, and stored as a single blob per row.
List entries are the metadata-only views and never carry secrets.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class Credential(BaseModel):
    """A per-service login. `registered_at` is assigned by the vault."""

    service: str
    username: str
    password: str
    email: str = ""
    cookies: str | None = None
    registered_at: str | None = None


class CredentialListEntry(BaseModel):
    """Credential metadata (never includes password or cookies)."""

    service: str
    username: str
    email: str
    registered_at: str


class PassportIdentity(BaseModel):
    name: str
    description: str = ""
    public_key: str
    created_at: str


class PassportOwner(BaseModel):
    id: str
    email: str
    verified: bool = False


class PassportEmail(BaseModel):
    address: str
    can_send: bool = False
    can_receive: bool = True


class PassportCapabilities(BaseModel):
    email: PassportEmail | None = None


class TrustFactors(BaseModel):
    owner_verified: bool = False
    email_verified: bool = False
    age_days: int = 0
    successful_auths: int = 0
    abuse_reports: int = 0


class PassportTrust(BaseModel):
    score: int = 0
    level: str = "unverified"
    factors: TrustFactors = Field(default_factory=TrustFactors)


class Passport(BaseModel):
    """Public identity of an agent plus trust metadata."""

    passport_id: str
    version: str = "1.0"
    identity: PassportIdentity
    owner: PassportOwner
    capabilities: PassportCapabilities = Field(default_factory=PassportCapabilities)
    trust: PassportTrust = Field(default_factory=PassportTrust)


class StoredIdentity(BaseModel):
    """An agent identity as kept in the vault, including its private key."""

    passport: Passport
    private_key: str
    status: Literal["active", "revoked"] = "active"


class IdentityListEntry(BaseModel):
    """Identity summary (never includes the private key)."""

    passport_id: str
    name: str
    status: Literal["active", "revoked"]
    created_at: str
