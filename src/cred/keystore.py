"""
Credential stores -- where vault keys and target tokens actually live.

cred never writes key material into its own files. It hands bytes to a
CredentialStore and keeps only the reference string.

Backends:
    keyring  -- the OS credential store via the ``keyring`` package (default)
    memory   -- a per-instance dict, for tests and throwaway sessions
    file     -- an encrypted JSON file, for headless machines and CI

Select with ``CRED_KEYSTORE``. The file backend reads its location from
``CRED_KEYSTORE_FILE`` and its 32-byte base64 key from
``CRED_KEYSTORE_FILE_KEY``.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import stat
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Mapping, Optional

from .crypto import KEY_SIZE, b64decode, b64encode, open_sealed, seal
from .errors import CredentialNotFound, ValidationError
from .fileio import atomic_write_bytes

logger = logging.getLogger("cred.keystore")

KEYRING_SERVICE = "cred-cli"
MASTER_KEY_ENV = "CRED_MASTER_KEY_B64"


class CredentialStore(ABC):
    """Capability for storing opaque secret bytes under a reference."""

    @abstractmethod
    def get(self, ref: str) -> bytes:
        """Return the bytes stored under ``ref``.

        Raises:
            CredentialNotFound: Nothing stored under ``ref``.
        """

    @abstractmethod
    def put(self, ref: str, data: bytes) -> None:
        """Store (or replace) bytes under ``ref``."""

    @abstractmethod
    def delete(self, ref: str) -> None:
        """Remove ``ref``. Missing references are not an error."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Backend name for status output."""


class MemoryStore(CredentialStore):
    """Dict-backed store. Contents die with the instance."""

    def __init__(self, initial: Optional[Mapping[str, bytes]] = None):
        self._data: dict[str, bytes] = dict(initial or {})

    @property
    def name(self) -> str:
        return "memory"

    def get(self, ref: str) -> bytes:
        try:
            return self._data[ref]
        except KeyError:
            raise CredentialNotFound(f"No credential stored for '{ref}'") from None

    def put(self, ref: str, data: bytes) -> None:
        self._data[ref] = bytes(data)

    def delete(self, ref: str) -> None:
        self._data.pop(ref, None)


class KeyringStore(CredentialStore):
    """OS credential store (macOS Keychain, Secret Service, Windows).

    Keyring backends store text, so bytes are base64-encoded.
    """

    def __init__(self, service: str = KEYRING_SERVICE):
        self.service = service

    @property
    def name(self) -> str:
        return "keyring"

    def get(self, ref: str) -> bytes:
        import keyring

        encoded = keyring.get_password(self.service, ref)
        if not encoded:
            raise CredentialNotFound(
                f"No credential for '{ref}' in the system credential store"
            )
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            raise CredentialNotFound(
                f"Corrupted credential for '{ref}' in the system credential store"
            ) from None

    def put(self, ref: str, data: bytes) -> None:
        import keyring

        keyring.set_password(self.service, ref, b64encode(data))

    def delete(self, ref: str) -> None:
        import keyring
        from keyring.errors import PasswordDeleteError

        try:
            keyring.delete_password(self.service, ref)
        except PasswordDeleteError:
            logger.debug("Keyring had no entry for %s", ref)


class FileStore(CredentialStore):
    """Credentials in one ChaCha20-Poly1305 sealed JSON file.

    Args:
        path: Store location.
        key: 32-byte encryption key.
    """

    def __init__(self, path: Path, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValidationError(f"File keystore key must be {KEY_SIZE} bytes")
        self.path = path
        self._key = key

    @property
    def name(self) -> str:
        return "file"

    def _load_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        envelope = json.loads(self.path.read_text(encoding="utf-8"))
        plaintext = open_sealed(
            b64decode(envelope["nonce"]), b64decode(envelope["ciphertext"]), self._key
        )
        return json.loads(plaintext)

    def _save_all(self, data: dict[str, str]) -> None:
        nonce, ciphertext = seal(json.dumps(data).encode("utf-8"), self._key)
        envelope = {"nonce": b64encode(nonce), "ciphertext": b64encode(ciphertext)}
        atomic_write_bytes(
            self.path,
            json.dumps(envelope, indent=2).encode("utf-8"),
            mode=stat.S_IRUSR | stat.S_IWUSR,
        )

    def get(self, ref: str) -> bytes:
        encoded = self._load_all().get(ref)
        if encoded is None:
            raise CredentialNotFound(f"No credential stored for '{ref}'")
        return b64decode(encoded)

    def put(self, ref: str, data: bytes) -> None:
        entries = self._load_all()
        entries[ref] = b64encode(data)
        self._save_all(entries)

    def delete(self, ref: str) -> None:
        entries = self._load_all()
        if entries.pop(ref, None) is not None:
            self._save_all(entries)


def resolve_store(
    env: Optional[Mapping[str, str]] = None,
    config_dir: Optional[Path] = None,
) -> CredentialStore:
    """Pick the credential store named by ``CRED_KEYSTORE``.

    Args:
        env: Environment mapping (defaults to ``os.environ``).
        config_dir: Default directory for the file backend.
    """
    env = os.environ if env is None else env
    backend = env.get("CRED_KEYSTORE", "keyring").lower()

    if backend == "memory":
        return MemoryStore()

    if backend == "file":
        key_b64 = env.get("CRED_KEYSTORE_FILE_KEY")
        if not key_b64:
            raise ValidationError(
                "CRED_KEYSTORE_FILE_KEY (base64, 32 bytes) is required for the file keystore"
            )
        try:
            key = base64.b64decode(key_b64.strip(), validate=True)
        except (binascii.Error, ValueError):
            raise ValidationError("Invalid base64 in CRED_KEYSTORE_FILE_KEY") from None
        default_dir = config_dir or Path("~/.config/cred").expanduser()
        path = Path(env.get("CRED_KEYSTORE_FILE", default_dir / "keystore.enc"))
        return FileStore(path.expanduser(), key)

    if backend != "keyring":
        raise ValidationError(
            f"Unknown CRED_KEYSTORE '{backend}'. Valid options: keyring, memory, file"
        )
    return KeyringStore()


def master_key_from_env(env: Optional[Mapping[str, str]] = None) -> Optional[bytes]:
    """Return the CI override key from ``CRED_MASTER_KEY_B64``, if set."""
    env = os.environ if env is None else env
    encoded = env.get(MASTER_KEY_ENV)
    if not encoded:
        return None
    try:
        key = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError(f"Invalid base64 in {MASTER_KEY_ENV}") from None
    if len(key) != KEY_SIZE:
        raise ValidationError(f"{MASTER_KEY_ENV} must decode to {KEY_SIZE} bytes")
    return key
