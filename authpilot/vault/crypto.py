"""
AES-256-GCM encryption for vault records.

The vault key is derived from the agent's private key with HKDF-SHA256, so only
the holder of the private key can read or write vault contents.

Wire format (base64url, unpadded):
    nonce (12 bytes) + ciphertext + tag (16 bytes)
"""

from __future__ import annotations

import base64
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from authpilot.errors import DecryptionError

NONCE_LENGTH = 12
TAG_LENGTH = 16
KEY_LENGTH = 32

HKDF_SALT = b"authpilot-vault"
HKDF_INFO = b"credential-vault-key"


def b64url_encode(data: bytes) -> str:
    """Encode bytes as unpadded base64url text."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(text: str) -> bytes:
    """Decode unpadded (or padded) base64url text."""
    padded = text + "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def derive_vault_key(private_key: str) -> bytes:
    """Derive a 32-byte AES key from base64url private key material."""
    ikm = b64url_decode(private_key)
    if not ikm:
        raise ValueError("Private key must not be empty")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=HKDF_SALT,
        info=HKDF_INFO,
    )
    return hkdf.derive(ikm)


def _check_key(key: bytes) -> None:
    if len(key) != KEY_LENGTH:
        raise ValueError(f"Vault key must be {KEY_LENGTH} bytes, got {len(key)}")


def encrypt(plaintext: str, key: bytes) -> str:
    """Encrypt plaintext with AES-256-GCM under a fresh random nonce."""
    _check_key(key)
    nonce = secrets.token_bytes(NONCE_LENGTH)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return b64url_encode(nonce + ciphertext)


def decrypt(encoded: str, key: bytes) -> str:
    """Decrypt a payload produced by encrypt(). Fails closed on any mismatch."""
    _check_key(key)
    try:
        data = b64url_decode(encoded)
    except (ValueError, UnicodeEncodeError) as e:
        raise DecryptionError(f"Malformed encrypted payload: {e}") from e

    if len(data) < NONCE_LENGTH + TAG_LENGTH:
        raise DecryptionError(
            f"Encrypted data too short: expected at least "
            f"{NONCE_LENGTH + TAG_LENGTH} bytes, got {len(data)}"
        )

    nonce = data[:NONCE_LENGTH]
    try:
        plaintext = AESGCM(key).decrypt(nonce, data[NONCE_LENGTH:], None)
    except InvalidTag as e:
        raise DecryptionError("Decryption failed: wrong key or tampered data") from e
    return plaintext.decode("utf-8")
