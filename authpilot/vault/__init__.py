"""
authpilot vault: encrypted local credential store (SQLite + AES-256-GCM).

Public API:
    CredentialVault(db_path, private_key)   → await init() before use
    vault.store(credential) / get / list / delete / has
    credential_key(passport_id, service)   → per-agent credential key
    vault.store_identity(identity) / get_identity / list_identities / ...
    init_key_file(path), load_key_file(path) → key-file bootstrap
"""

from __future__ import annotations

from authpilot.vault.keyfile import init_key_file, load_key_file
from authpilot.vault.models import (
    Credential,
    CredentialListEntry,
    IdentityListEntry,
    Passport,
    StoredIdentity,
)
from authpilot.vault.passport import KeyPair, create_passport, generate_key_pair
from authpilot.vault.store import CredentialVault, credential_key

__all__ = [
    "CredentialVault",
    "Credential",
    "CredentialListEntry",
    "IdentityListEntry",
    "KeyPair",
    "Passport",
    "StoredIdentity",
    "credential_key",
    "create_passport",
    "generate_key_pair",
    "init_key_file",
    "load_key_file",
]
