"""
Audit trail for a project.

Append-only JSONL at ``.cred/audit.log``: one structured entry per
state-changing command. Values never appear here, only key names.
"""

from __future__ import annotations

import socket
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

AUDIT_LOG_NAME = "audit.log"


class AuditEntry(BaseModel):
    """A single audit log line."""

    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    event_type: str
    detail: str
    host: str = Field(default_factory=socket.gethostname)
    metadata: Optional[dict] = None


def audit_event(
    cred_dir: Path,
    event_type: str,
    detail: str,
    metadata: Optional[dict] = None,
) -> AuditEntry:
    """Append an event to the project's audit log.

    Args:
        cred_dir: The project's ``.cred`` directory.
        event_type: INIT, SECRET_SET, SECRET_REMOVE, PUSH, PRUNE, IMPORT, ...
        detail: Human-readable description.
        metadata: Extra structured data (key names, counts).

    Returns:
        AuditEntry: The entry that was written.
    """
    entry = AuditEntry(event_type=event_type, detail=detail, metadata=metadata)
    with (cred_dir / AUDIT_LOG_NAME).open("a", encoding="utf-8") as f:
        f.write(entry.model_dump_json() + "\n")
    return entry


def read_audit_log(cred_dir: Path, limit: int = 0) -> list[AuditEntry]:
    """Read audit entries, oldest first. ``limit`` keeps only the newest N."""
    audit_log = cred_dir / AUDIT_LOG_NAME
    if not audit_log.exists():
        return []

    entries = [
        AuditEntry.model_validate_json(line)
        for line in audit_log.read_text(encoding="utf-8").splitlines()
        if line.strip()
    ]
    if limit > 0:
        entries = entries[-limit:]
    return entries
