"""
Crash-safe file writes.

Data goes to a temporary file in the destination directory, is flushed
and fsynced, then renamed over the target. A crash mid-write leaves
the previous file intact.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Atomically replace ``path`` with ``data``.

    Args:
        path: Destination file.
        data: Full new contents.
        mode: Optional permission bits applied before the rename.

    Raises:
        OSError: On any filesystem failure (the temp file is removed).
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=path.parent,
        prefix=f".{path.name}-",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        if mode is not None:
            os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def atomic_write_text(path: Path, text: str, mode: Optional[int] = None) -> None:
    atomic_write_bytes(path, text.encode("utf-8"), mode=mode)
