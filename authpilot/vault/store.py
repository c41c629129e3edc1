"""
Encrypted credential vault backed by SQLite + AES-256-GCM.

Each record is serialized to JSON and stored as one encrypted blob keyed by
service name (credentials) or passport id (identities). The encryption key is
derived from the agent's private key, which is passed in explicitly and never
written to the store.

Usage:
    vault = CredentialVault("/path/to/vault.db", private_key)
    await vault.init()
    key = credential_key("ap_abc123def456", "github.com")
    await vault.store(Credential(service=key, username="bot", password="s3cret"))
    cred = await vault.get(key)
    mine = await vault.list(passport_id="ap_abc123def456")
    vault.close()
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import UTC, datetime
from pathlib import Path

from authpilot.errors import VaultClosedError, VaultNotInitializedError
from authpilot.vault.crypto import decrypt, derive_vault_key, encrypt
from authpilot.vault.models import (
    Credential,
    CredentialListEntry,
    IdentityListEntry,
    StoredIdentity,
)

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS credentials (
        service TEXT PRIMARY KEY,
        encrypted_data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS identities (
        passport_id TEXT PRIMARY KEY,
        encrypted_data TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def credential_key(passport_id: str, service: str) -> str:
    """Vault key for one agent's credential on a service."""
    return f"{passport_id}:{service}"


class CredentialVault:
    """Encrypted local store for per-service credentials and agent identities."""

    def __init__(self, db_path: Path | str, private_key: str) -> None:
        self._db_path = str(db_path)
        self._private_key = private_key
        self._conn: sqlite3.Connection | None = None
        self._key: bytes | None = None
        self._closed = False
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Derive the vault key and ensure the schema exists.

        Must be called before any other method.
        """
        if self._closed:
            raise VaultClosedError()
        if self._conn is not None:
            return

        self._key = derive_vault_key(self._private_key)

        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path)
        # WAL: concurrent readers, single writer
        conn.execute("PRAGMA journal_mode=WAL")
        for ddl in _SCHEMA:
            conn.execute(ddl)
        conn.commit()
        self._conn = conn
        logger.debug("Vault opened at %s", self._db_path)

    def close(self) -> None:
        """Release the connection. The instance cannot be used afterwards."""
        if self._conn is not None:
            self._conn.close()
        self._conn = None
        self._key = None
        self._closed = True

    @property
    def is_open(self) -> bool:
        return self._conn is not None and not self._closed

    def _require(self) -> tuple[sqlite3.Connection, bytes]:
        if self._closed:
            raise VaultClosedError()
        if self._conn is None or self._key is None:
            raise VaultNotInitializedError()
        return self._conn, self._key

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _fetch_blob(self, table: str, key_column: str, key: str) -> str | None:
        conn, _ = self._require()
        row = conn.execute(
            f"SELECT encrypted_data FROM {table} WHERE {key_column} = ?",
            (key,),
        ).fetchone()
        return row[0] if row else None

    def _upsert(self, table: str, key_column: str, key: str, blob: str) -> None:
        conn, _ = self._require()
        now = _now()
        with conn:
            conn.execute(
                f"""
                INSERT INTO {table} ({key_column}, encrypted_data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT({key_column}) DO UPDATE SET
                    encrypted_data = excluded.encrypted_data,
                    updated_at = excluded.updated_at
                """,
                (key, blob, now, now),
            )

    def _delete(self, table: str, key_column: str, key: str) -> bool:
        conn, _ = self._require()
        with conn:
            cur = conn.execute(f"DELETE FROM {table} WHERE {key_column} = ?", (key,))
        return cur.rowcount > 0

    def _exists(self, table: str, key_column: str, key: str) -> bool:
        conn, _ = self._require()
        row = conn.execute(f"SELECT 1 FROM {table} WHERE {key_column} = ?", (key,)).fetchone()
        return row is not None

    def _all_blobs(self, table: str, key_column: str) -> list[str]:
        conn, _ = self._require()
        rows = conn.execute(
            f"SELECT encrypted_data FROM {table} ORDER BY {key_column} ASC"
        ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def store(self, credential: Credential) -> Credential:
        """Insert or update the credential for `credential.service`.

        `registered_at` is stamped on first insert and preserved on update.
        Returns the record as stored.
        """
        _, key = self._require()
        async with self._write_lock:
            registered_at = _now()
            existing = self._fetch_blob("credentials", "service", credential.service)
            if existing is not None:
                previous = Credential.model_validate_json(decrypt(existing, key))
                registered_at = previous.registered_at or registered_at

            record = credential.model_copy(update={"registered_at": registered_at})
            blob = encrypt(record.model_dump_json(), key)
            self._upsert("credentials", "service", record.service, blob)

        logger.info("Stored credential for %s", record.service)
        return record

    async def get(self, service: str) -> Credential | None:
        """Return the decrypted credential, or None if absent."""
        _, key = self._require()
        blob = self._fetch_blob("credentials", "service", service)
        if blob is None:
            return None
        return Credential.model_validate_json(decrypt(blob, key))

    async def list(self, passport_id: str | None = None) -> list[CredentialListEntry]:
        """All credentials ordered by key, without passwords or cookies.

        With `passport_id`, only that agent's credentials are returned and the
        agent prefix is stripped from `service`.
        """
        _, key = self._require()
        prefix = credential_key(passport_id, "") if passport_id is not None else ""
        entries = []
        for blob in self._all_blobs("credentials", "service"):
            cred = Credential.model_validate_json(decrypt(blob, key))
            if not cred.service.startswith(prefix):
                continue
            entries.append(
                CredentialListEntry(
                    service=cred.service[len(prefix) :],
                    username=cred.username,
                    email=cred.email,
                    registered_at=cred.registered_at or "",
                )
            )
        return entries

    async def delete(self, service: str) -> bool:
        """Delete the credential for a service. Returns True if one existed."""
        self._require()
        async with self._write_lock:
            return self._delete("credentials", "service", service)

    async def has(self, service: str) -> bool:
        return self._exists("credentials", "service", service)

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------

    async def store_identity(self, identity: StoredIdentity) -> None:
        """Insert or update an identity keyed by its passport id."""
        _, key = self._require()
        async with self._write_lock:
            blob = encrypt(identity.model_dump_json(), key)
            self._upsert("identities", "passport_id", identity.passport.passport_id, blob)

    async def get_identity(self, passport_id: str) -> StoredIdentity | None:
        _, key = self._require()
        blob = self._fetch_blob("identities", "passport_id", passport_id)
        if blob is None:
            return None
        return StoredIdentity.model_validate_json(decrypt(blob, key))

    async def list_identities(self) -> list[IdentityListEntry]:
        """All identities ordered by passport id, without private keys."""
        _, key = self._require()
        entries = []
        for blob in self._all_blobs("identities", "passport_id"):
            identity = StoredIdentity.model_validate_json(decrypt(blob, key))
            entries.append(
                IdentityListEntry(
                    passport_id=identity.passport.passport_id,
                    name=identity.passport.identity.name,
                    status=identity.status,
                    created_at=identity.passport.identity.created_at,
                )
            )
        return entries

    async def delete_identity(self, passport_id: str) -> bool:
        self._require()
        async with self._write_lock:
            return self._delete("identities", "passport_id", passport_id)

    async def has_identity(self, passport_id: str) -> bool:
        return self._exists("identities", "passport_id", passport_id)
