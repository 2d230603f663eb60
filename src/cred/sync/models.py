"""
Sync data models -- plans, reports, and push bookkeeping.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..errors import PartialFailure


class SyncOperation(str, Enum):
    """Which way a batch goes. Push only upserts; prune only deletes."""

    PUSH = "push"
    PRUNE = "prune"

    def __str__(self) -> str:
        return self.value


class ChangeKind(str, Enum):
    """How a key relates to what a target last received."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"


class PushRecord(BaseModel):
    """What we last delivered to a target for one key."""

    last_pushed_hash: str
    pushed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PushStateFile(BaseModel):
    """On-disk shape of ``.cred/push-state.json``: target -> key -> record."""

    version: int = 1
    targets: dict[str, dict[str, PushRecord]] = Field(default_factory=dict)


class SyncPlan(BaseModel):
    """Immutable snapshot of what a push or prune will do.

    Computed before any remote call; buckets are sorted.
    """

    model_config = ConfigDict(frozen=True)

    operation: SyncOperation
    target: str
    identity: str
    create: tuple[str, ...] = ()
    update: tuple[str, ...] = ()
    skip: tuple[str, ...] = ()
    delete: tuple[str, ...] = ()
    dry_run: bool = True

    @property
    def actionable(self) -> tuple[str, ...]:
        """Keys that need a remote call."""
        if self.operation == SyncOperation.PRUNE:
            return self.delete
        return tuple(sorted(self.create + self.update))

    @property
    def counts(self) -> dict[str, int]:
        return {
            "create": len(self.create),
            "update": len(self.update),
            "skip": len(self.skip),
            "delete": len(self.delete),
        }


class SyncReport(BaseModel):
    """Outcome of an executed plan. Never all-or-nothing."""

    operation: SyncOperation
    target: str
    identity: str
    succeeded: list[str] = Field(default_factory=list)
    failed: dict[str, str] = Field(default_factory=dict)
    skipped: list[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> "SyncReport":
        """Raise PartialFailure if any key failed, else return self."""
        if self.failed:
            raise PartialFailure(self)
        return self
