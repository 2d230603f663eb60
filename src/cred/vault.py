"""
The Vault -- a project's secrets, encrypted at rest.

On disk the vault is a small JSON envelope::

    {"version": 2, "nonce": "<b64>", "ciphertext": "<b64 ciphertext||tag>"}

sealed with ChaCha20-Poly1305 under a 32-byte key the caller supplies.
The envelope version is bound to the ciphertext as associated data, so
rewriting it fails authentication like any other tampering.

Schema versions (decided on the decrypted plaintext):
    - v1 (legacy): a flat ``{key: value}`` mapping, no metadata.
    - v2 (current): ``{"version": 2, "secrets": {key: SecretEntry}}``.

Legacy payloads are migrated in memory on load. The file itself is only
rewritten in the current schema on the next explicit save.
"""

from __future__ import annotations

import json
import logging
import stat
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterator, Literal, Optional, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .crypto import b64decode, b64encode, digest, open_sealed, seal
from .errors import CryptoError, MigrationError, UnknownKey, VaultIOError, VaultNotFound
from .fileio import atomic_write_bytes
from .formats import SecretFormat, classify
from .models import SecretEntry, utcnow

logger = logging.getLogger("cred.vault")

CURRENT_VERSION = 2
LEGACY_VERSION = 1
SUPPORTED_VERSIONS = (LEGACY_VERSION, CURRENT_VERSION)

VAULT_FILE_MODE = stat.S_IRUSR | stat.S_IWUSR


# ---------------------------------------------------------------------------
# Payload variants
# ---------------------------------------------------------------------------


class LegacyPayload(BaseModel):
    """Decrypted v1 payload: bare key/value strings."""

    secrets: dict[str, str]


class CurrentPayload(BaseModel):
    """Decrypted v2 payload."""

    version: Literal[2] = CURRENT_VERSION
    secrets: dict[str, SecretEntry]


VaultPayload = Union[LegacyPayload, CurrentPayload]


class _Envelope(BaseModel):
    version: int
    nonce: str
    ciphertext: str


def envelope_aad(version: int) -> Optional[bytes]:
    """Associated data binding the envelope version to its ciphertext.

    Legacy envelopes were sealed without any.
    """
    if version == LEGACY_VERSION:
        return None
    return str(version).encode("ascii")


# ---------------------------------------------------------------------------
# In-memory vault
# ---------------------------------------------------------------------------


class Vault:
    """In-memory mapping of key -> SecretEntry.

    Mutations only touch memory; call ``save_vault`` to persist.

    Args:
        secrets: Initial entries.
        migrated: True when the entries came from a legacy payload.
    """

    def __init__(
        self,
        secrets: Optional[dict[str, SecretEntry]] = None,
        migrated: bool = False,
    ):
        self._secrets: dict[str, SecretEntry] = dict(secrets or {})
        self.migrated = migrated

    def __contains__(self, key: object) -> bool:
        return key in self._secrets

    def __len__(self) -> int:
        return len(self._secrets)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def keys(self) -> list[str]:
        """All keys, sorted."""
        return sorted(self._secrets)

    def get(self, key: str) -> Optional[str]:
        entry = self._secrets.get(key)
        return entry.value if entry else None

    def get_entry(self, key: str) -> Optional[SecretEntry]:
        return self._secrets.get(key)

    def list_entries(self) -> list[tuple[str, SecretEntry]]:
        """Entries ordered lexicographically by key."""
        return [(key, self._secrets[key]) for key in self.keys()]

    def as_env(self) -> dict[str, str]:
        """Plain key -> value view."""
        return {key: entry.value for key, entry in self.list_entries()}

    def set(self, key: str, value: str) -> SecretEntry:
        """Upsert with an auto-detected format."""
        return self.set_with_metadata(key, value)

    def set_with_metadata(
        self,
        key: str,
        value: str,
        explicit_format: Optional[SecretFormat] = None,
        description: Optional[str] = None,
    ) -> SecretEntry:
        """Insert or overwrite a secret.

        The hash and format are recomputed from the new value and
        ``updated_at`` advances. ``created_at`` is kept for existing
        keys. A None description keeps whatever was there before.

        Returns:
            The stored entry.
        """
        fmt = explicit_format if explicit_format is not None else classify(value)
        existing = self._secrets.get(key)

        if existing is None:
            now = utcnow()
            entry = SecretEntry(
                value=value,
                format=fmt,
                hash=digest(value),
                created_at=now,
                updated_at=now,
                description=description,
            )
        else:
            entry = SecretEntry(
                value=value,
                format=fmt,
                hash=digest(value),
                created_at=existing.created_at,
                updated_at=_advance(existing.updated_at),
                description=(
                    description if description is not None else existing.description
                ),
            )

        self._secrets[key] = entry
        return entry

    def describe(self, key: str, text: Optional[str]) -> SecretEntry:
        """Set or clear the description. Nothing else changes."""
        entry = self._secrets.get(key)
        if entry is None:
            raise UnknownKey(key)
        entry.description = text
        return entry

    def remove_entry(self, key: str) -> Optional[SecretEntry]:
        """Delete a secret, returning the removed entry if there was one."""
        return self._secrets.pop(key, None)

    @staticmethod
    def entry_age(entry: SecretEntry, now: Optional[datetime] = None) -> timedelta:
        """Time since the entry last changed."""
        return (now or utcnow()) - entry.updated_at

    def to_payload(self) -> dict:
        return {
            "version": CURRENT_VERSION,
            "secrets": {key: entry.to_payload() for key, entry in self.list_entries()},
        }


def _advance(previous: datetime) -> datetime:
    """Now, but strictly after ``previous`` even if the clock lags."""
    now = utcnow()
    if now <= previous:
        return previous + timedelta(microseconds=1)
    return now


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------


def decode_payload(envelope_version: int, plaintext: bytes) -> VaultPayload:
    """Decode decrypted bytes into one of the known payload shapes.

    Raises:
        MigrationError: If the payload fits no schema.
    """
    if envelope_version not in SUPPORTED_VERSIONS:
        raise MigrationError(
            f"Unsupported vault version: {envelope_version}. Please upgrade cred."
        )

    try:
        data = json.loads(plaintext)
    except ValueError as exc:
        raise MigrationError(f"Vault payload is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MigrationError("Vault payload must be a JSON object")

    try:
        if (
            envelope_version == CURRENT_VERSION
            and isinstance(data.get("version"), int)
            and isinstance(data.get("secrets"), dict)
        ):
            return CurrentPayload.model_validate(data)
        return LegacyPayload.model_validate({"secrets": data}, strict=True)
    except PydanticValidationError as exc:
        raise MigrationError(
            f"Vault payload is structurally invalid: {exc.error_count()} error(s)"
        ) from exc


def migrate_legacy(payload: LegacyPayload) -> dict[str, SecretEntry]:
    """Normalize v1 secrets into entries.

    Every entry is stamped with the same migration instant and has no
    hash, so it counts as changed for every target until rewritten.
    """
    now = utcnow()
    return {
        key: SecretEntry(
            value=value,
            format=classify(value),
            hash=None,
            created_at=now,
            updated_at=now,
        )
        for key, value in payload.secrets.items()
    }


def normalize(payload: VaultPayload) -> Vault:
    if isinstance(payload, LegacyPayload):
        logger.info("Migrating %d legacy secret(s) in memory", len(payload.secrets))
        return Vault(migrate_legacy(payload), migrated=True)
    return Vault(payload.secrets)


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def load_vault(path: Path, key: bytes) -> Vault:
    """Read, authenticate, decrypt, and normalize a vault file.

    Args:
        path: Vault file location.
        key: 32-byte vault key.

    Raises:
        VaultNotFound: No file at ``path``.
        VaultIOError: The file exists but cannot be read.
        CryptoError: Wrong key or tampered file.
        MigrationError: Authentic payload in an unknown shape.
    """
    if not path.exists():
        raise VaultNotFound(f"No vault at {path}. Run 'cred init' to start.")

    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise VaultIOError(f"Failed to read {path}: {exc}") from exc

    try:
        envelope = _Envelope.model_validate_json(raw)
    except PydanticValidationError as exc:
        raise CryptoError() from exc

    plaintext = open_sealed(
        b64decode(envelope.nonce), b64decode(envelope.ciphertext), key,
        aad=envelope_aad(envelope.version),
    )
    return normalize(decode_payload(envelope.version, plaintext))


def save_vault(path: Path, key: bytes, vault: Vault) -> None:
    """Encrypt the full current-schema payload and write it atomically.

    Raises:
        VaultIOError: On disk failure. The previous file is left intact.
    """
    plaintext = json.dumps(vault.to_payload(), separators=(",", ":")).encode("utf-8")
    nonce, ciphertext = seal(plaintext, key, aad=envelope_aad(CURRENT_VERSION))
    envelope = _Envelope(
        version=CURRENT_VERSION,
        nonce=b64encode(nonce),
        ciphertext=b64encode(ciphertext),
    )
    try:
        atomic_write_bytes(
            path,
            envelope.model_dump_json(indent=2).encode("utf-8"),
            mode=VAULT_FILE_MODE,
        )
    except OSError as exc:
        raise VaultIOError(f"Failed to write {path}: {exc}") from exc

    vault.migrated = False
    logger.debug("Vault saved: %s (%d secrets)", path, len(vault))
