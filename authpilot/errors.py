"""
Exception hierarchy.

Only programming errors and cryptographic failures are raised. Missing
identities, missing credentials and browser automation failures are reported
as structured results by the orchestrator.
"""

from __future__ import annotations


class AuthPilotError(Exception):
    """Base class for all authpilot errors."""


class VaultError(AuthPilotError):
    """Vault misuse or storage failure."""


class VaultNotInitializedError(VaultError):
    """A vault method was called before init()."""

    def __init__(self) -> None:
        super().__init__("CredentialVault is not initialized. Call init() first.")


class VaultClosedError(VaultError):
    """A vault method was called after close()."""

    def __init__(self) -> None:
        super().__init__("CredentialVault is closed and can no longer be used.")


class DecryptionError(VaultError):
    """Ciphertext could not be authenticated with the vault key."""
