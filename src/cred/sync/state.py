"""
Push state -- the local record of the last hash each target received.

Targets are write-only: nothing can be read back. This file is the only
memory of what was delivered, so it is written after every confirmed
remote success and never touched by local-only commands.

It holds hashes, not secrets, and lives beside the project identity.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from ..errors import VaultIOError
from ..fileio import atomic_write_text
from .models import PushRecord, PushStateFile

logger = logging.getLogger("cred.sync.state")


class PushStateStore:
    """Thread-safe view over ``push-state.json``.

    Every mutation is persisted atomically before it returns, so an
    interrupted batch keeps every commit made so far.

    Args:
        path: Backing file. None keeps state in memory only.
        data: Initial contents.
    """

    def __init__(self, path: Optional[Path] = None, data: Optional[PushStateFile] = None):
        self.path = path
        self._data = data or PushStateFile()
        self._lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> "PushStateStore":
        """Load from disk. A missing or unreadable file starts empty.

        Starting empty only makes every key look new, which costs a
        redundant upload and never loses a secret.
        """
        data = PushStateFile()
        if path.exists():
            try:
                data = PushStateFile.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, PydanticValidationError) as exc:
                logger.warning("Failed to load push state %s: %s", path, exc)
        return cls(path, data)

    def get(self, target: str, key: str) -> Optional[PushRecord]:
        with self._lock:
            return self._data.targets.get(target, {}).get(key)

    def for_target(self, target: str) -> dict[str, PushRecord]:
        """Copy of every record for ``target``."""
        with self._lock:
            return dict(self._data.targets.get(target, {}))

    def keys_for(self, target: str) -> list[str]:
        """Keys ever pushed to ``target`` and not pruned since."""
        with self._lock:
            return sorted(self._data.targets.get(target, {}))

    def targets(self) -> list[str]:
        with self._lock:
            return sorted(t for t, records in self._data.targets.items() if records)

    def record(self, target: str, key: str, pushed_hash: str) -> PushRecord:
        """Commit a confirmed upsert."""
        record = PushRecord(last_pushed_hash=pushed_hash)
        with self._lock:
            self._data.targets.setdefault(target, {})[key] = record
            self._save_locked()
        logger.debug("Committed push state %s/%s", target, key)
        return record

    def forget(self, target: str, key: str) -> bool:
        """Drop a record after a confirmed delete."""
        with self._lock:
            records = self._data.targets.get(target, {})
            if records.pop(key, None) is None:
                return False
            if not records:
                self._data.targets.pop(target, None)
            self._save_locked()
        logger.debug("Cleared push state %s/%s", target, key)
        return True

    def save(self) -> None:
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        if self.path is None:
            return
        try:
            atomic_write_text(self.path, self._data.model_dump_json(indent=2))
        except OSError as exc:
            raise VaultIOError(f"Failed to write {self.path}: {exc}") from exc
