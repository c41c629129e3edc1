"""
Agent identity management on top of the vault.

Creates Ed25519-backed passports and keeps them in the vault's identity
table. Revoked identities stay on record but are invisible to
``get_active_identity``.
"""

from __future__ import annotations

import logging

from authpilot.vault.models import IdentityListEntry, StoredIdentity
from authpilot.vault.passport import DEFAULT_EMAIL_DOMAIN, create_passport, generate_key_pair
from authpilot.vault.store import CredentialVault

logger = logging.getLogger(__name__)


class IdentityService:
    def __init__(self, vault: CredentialVault, email_domain: str = DEFAULT_EMAIL_DOMAIN) -> None:
        self._vault = vault
        self._email_domain = email_domain

    async def create_identity(
        self, name: str, owner_email: str, description: str = ""
    ) -> StoredIdentity:
        keys = generate_key_pair()
        passport = create_passport(
            name,
            keys.public_key,
            owner_email,
            description=description,
            email_domain=self._email_domain,
        )
        identity = StoredIdentity(passport=passport, private_key=keys.private_key)
        await self._vault.store_identity(identity)
        logger.info("Created identity %s (%s)", passport.passport_id, name)
        return identity

    async def get_identity(self, passport_id: str) -> StoredIdentity | None:
        return await self._vault.get_identity(passport_id)

    async def get_active_identity(self, passport_id: str) -> StoredIdentity | None:
        """The identity if it exists and has not been revoked."""
        identity = await self._vault.get_identity(passport_id)
        if identity is None or identity.status != "active":
            return None
        return identity

    async def list_identities(self) -> list[IdentityListEntry]:
        return await self._vault.list_identities()

    async def revoke_identity(self, passport_id: str) -> bool:
        identity = await self._vault.get_identity(passport_id)
        if identity is None:
            return False
        await self._vault.store_identity(identity.model_copy(update={"status": "revoked"}))
        logger.info("Revoked identity %s", passport_id)
        return True

    async def delete_identity(self, passport_id: str) -> bool:
        return await self._vault.delete_identity(passport_id)
