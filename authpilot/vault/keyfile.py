"""
Key-file bootstrap for the vault.

The vault never reads key material on its own. Callers that keep the agent's
private key on disk (the CLI, local scripts) use these helpers to load it and
pass it to CredentialVault explicitly.

The key file holds a base64url Ed25519 private key and is chmod 600.
"""

from __future__ import annotations

import stat
from pathlib import Path

from authpilot.vault.crypto import b64url_decode
from authpilot.vault.passport import generate_key_pair


def init_key_file(key_path: Path | str) -> Path:
    """Generate a new private key file. Idempotent: skips if it exists."""
    key_path = Path(key_path)
    if key_path.exists():
        return key_path
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_pair = generate_key_pair()
    key_path.write_text(key_pair.private_key)
    key_path.chmod(stat.S_IRUSR | stat.S_IWUSR)  # 600
    return key_path


def load_key_file(key_path: Path | str) -> str:
    """Read the private key from disk and validate its length."""
    key_path = Path(key_path)
    if not key_path.exists():
        raise FileNotFoundError(
            f"Vault key not found at {key_path}. Run 'authpilot key init' to generate one."
        )
    private_key = key_path.read_text().strip()
    raw = b64url_decode(private_key)
    if len(raw) != 32:
        raise ValueError(f"Vault key must decode to 32 bytes, got {len(raw)}")
    return private_key
