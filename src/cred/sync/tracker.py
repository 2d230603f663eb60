"""
Change tracking against a remote we cannot read.

A key is dirty for a target when we have no proof the target holds its
current value: no hash yet (legacy entry), no push record, or a record
for a different hash.
"""

from __future__ import annotations

from typing import Iterable, Optional

from ..models import SecretEntry
from ..vault import Vault
from .models import ChangeKind, PushRecord, SyncOperation, SyncPlan
from .state import PushStateStore


def is_dirty(entry: SecretEntry, record: Optional[PushRecord]) -> bool:
    if entry.hash is None or record is None:
        return True
    return entry.hash != record.last_pushed_hash


def classify_change(entry: SecretEntry, record: Optional[PushRecord]) -> ChangeKind:
    if record is None:
        return ChangeKind.CREATE
    if is_dirty(entry, record):
        return ChangeKind.UPDATE
    return ChangeKind.SKIP


def dirty_keys(vault: Vault, state: PushStateStore, target: str) -> set[str]:
    """Every vault key that would be uploaded by a full push."""
    records = state.for_target(target)
    return {
        key for key, entry in vault.list_entries()
        if is_dirty(entry, records.get(key))
    }


def build_push_plan(
    vault: Vault,
    state: PushStateStore,
    target: str,
    identity: str,
    keys: Iterable[str],
) -> SyncPlan:
    """Bucket ``keys`` into create / update / skip for ``target``.

    Every key must exist in the vault; callers validate first.
    """
    records = state.for_target(target)
    buckets: dict[ChangeKind, list[str]] = {kind: [] for kind in ChangeKind}
    for key in sorted(set(keys)):
        entry = vault.get_entry(key)
        if entry is None:
            raise KeyError(key)
        buckets[classify_change(entry, records.get(key))].append(key)

    return SyncPlan(
        operation=SyncOperation.PUSH,
        target=target,
        identity=identity,
        create=tuple(buckets[ChangeKind.CREATE]),
        update=tuple(buckets[ChangeKind.UPDATE]),
        skip=tuple(buckets[ChangeKind.SKIP]),
    )
