"""Exclusive, non-blocking project lock."""

from __future__ import annotations

import fcntl
import logging
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import LockBusy

logger = logging.getLogger("cred.lock")

LOCK_FILE_NAME = ".lock"


@contextmanager
def project_lock(cred_dir: Path) -> Iterator[Path]:
    """Hold an advisory exclusive lock on ``cred_dir`` for the block.

    cred runs are short, so a held lock fails fast instead of waiting.

    Raises:
        LockBusy: Another process holds the lock.
    """
    lock_path = cred_dir / LOCK_FILE_NAME
    fd = os.open(lock_path, os.O_RDWR | os.O_CREAT, 0o600)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise LockBusy(
                f"Another cred command is using {cred_dir}. Try again when it finishes."
            ) from None
        logger.debug("Acquired %s", lock_path)
        try:
            yield lock_path
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
