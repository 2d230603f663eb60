"""
Target Synchronizer -- push and prune against a write-only remote.

    push   ->  resolve identity -> select keys -> plan -> upsert dirty keys
    prune  ->  resolve identity -> select keys -> plan -> delete keys

The remote is never read. The plan is built from the vault and our own
push state, frozen, and only then executed. Each key's outcome stands on
its own: a rejected key is reported, its siblings still run, and every
confirmed success is committed to push state immediately. Re-running
after an interruption only retries what was not committed.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional, Sequence, Union

from ..crypto import digest
from ..errors import TargetAPIError, UnknownKey, ValidationError
from ..project import resolve_identity
from ..vault import Vault
from .models import SyncOperation, SyncPlan, SyncReport
from .state import PushStateStore
from .targets import TargetClient
from .tracker import build_push_plan

logger = logging.getLogger("cred.sync.engine")

DEFAULT_MAX_WORKERS = 4

SyncResult = Union[SyncPlan, SyncReport]


class TargetSynchronizer:
    """Runs push/prune for one target client.

    Args:
        vault: Loaded vault (read only here).
        state: Push state for the project.
        client: Target client to call.
        recorded_identity: Identity recorded at project init.
        detected_identity: Identity of the live working tree, if any.
        max_workers: Upper bound on concurrent remote calls.
    """

    def __init__(
        self,
        vault: Vault,
        state: PushStateStore,
        client: TargetClient,
        recorded_identity: Optional[str] = None,
        detected_identity: Optional[str] = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ) -> None:
        self.vault = vault
        self.state = state
        self.client = client
        self.recorded_identity = recorded_identity
        self.detected_identity = detected_identity
        self.max_workers = max(1, max_workers)

    @property
    def target(self) -> str:
        return self.client.name

    def _resolve(self, identity: Optional[str], verb: str) -> str:
        resolved = resolve_identity(
            self.recorded_identity, supplied=identity,
            detected=self.detected_identity, verb=verb,
        )
        self.client.validate_identity(resolved)
        return resolved

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def plan_push(
        self,
        keys: Optional[Sequence[str]] = None,
        identity: Optional[str] = None,
    ) -> SyncPlan:
        """Build the push plan without contacting the target.

        Raises:
            IdentityMismatch, MissingIdentity: Identity checks failed.
            UnknownKey: An explicit key is not in the vault.
        """
        resolved = self._resolve(identity, "push")
        if keys:
            missing = sorted({k for k in keys if k not in self.vault})
            if missing:
                raise UnknownKey(missing)
            selected = list(keys)
        else:
            selected = self.vault.keys()

        plan = build_push_plan(self.vault, self.state, self.target, resolved, selected)
        logger.debug("Push plan for %s:%s %s", self.target, resolved, plan.counts)
        return plan

    def push(
        self,
        keys: Optional[Sequence[str]] = None,
        dry_run: bool = False,
        identity: Optional[str] = None,
    ) -> SyncResult:
        """Upload new and changed keys. Never deletes anything.

        Returns:
            The plan when ``dry_run``; otherwise the execution report.
        """
        plan = self.plan_push(keys, identity)
        if dry_run:
            return plan
        return self.execute_push(plan)

    def execute_push(self, plan: SyncPlan) -> SyncReport:
        entries = {key: self.vault.get_entry(key) for key in plan.actionable}

        def upsert(key: str) -> None:
            entry = entries[key]
            self.client.upsert(plan.identity, key, entry.value, entry.format)
            self.state.record(plan.target, key, entry.hash or digest(entry.value))

        succeeded, failed = self._run(plan.actionable, upsert)
        report = SyncReport(
            operation=SyncOperation.PUSH,
            target=plan.target,
            identity=plan.identity,
            succeeded=succeeded,
            failed=failed,
            skipped=list(plan.skip),
        )
        logger.info(
            "Push to %s:%s -- %d succeeded, %d failed, %d unchanged",
            plan.target, plan.identity, len(succeeded), len(failed), len(plan.skip),
        )
        return report

    # ------------------------------------------------------------------
    # Prune
    # ------------------------------------------------------------------

    def plan_prune(
        self,
        keys: Optional[Sequence[str]] = None,
        select_all: bool = False,
        identity: Optional[str] = None,
    ) -> SyncPlan:
        """Build the prune plan without contacting the target.

        With ``select_all`` the keys are those we have pushed to this
        target; the vault is not consulted. Explicit keys are taken as
        given, pushed by us or not.
        """
        resolved = self._resolve(identity, "prune")
        if keys and select_all:
            raise ValidationError("Specify keys to prune or use --all, not both.")
        if keys:
            selected = sorted(set(keys))
        elif select_all:
            selected = self.state.keys_for(self.target)
        else:
            raise ValidationError("Specify keys to prune or use --all.")

        return SyncPlan(
            operation=SyncOperation.PRUNE,
            target=self.target,
            identity=resolved,
            delete=tuple(selected),
        )

    def prune(
        self,
        keys: Optional[Sequence[str]] = None,
        select_all: bool = False,
        dry_run: bool = False,
        identity: Optional[str] = None,
        confirmed: bool = False,
    ) -> SyncResult:
        """Delete keys from the target. Never uploads; never edits the vault.

        Raises:
            ValidationError: Not a dry run and not confirmed.
        """
        plan = self.plan_prune(keys, select_all, identity)
        if dry_run:
            return plan
        if not confirmed:
            raise ValidationError("prune is destructive; rerun with --yes")
        return self.execute_prune(plan)

    def execute_prune(self, plan: SyncPlan) -> SyncReport:
        def delete(key: str) -> None:
            self.client.delete(plan.identity, key)
            self.state.forget(plan.target, key)

        succeeded, failed = self._run(plan.delete, delete)
        logger.info(
            "Prune on %s:%s -- %d deleted, %d failed",
            plan.target, plan.identity, len(succeeded), len(failed),
        )
        return SyncReport(
            operation=SyncOperation.PRUNE,
            target=plan.target,
            identity=plan.identity,
            succeeded=succeeded,
            failed=failed,
        )

    # ------------------------------------------------------------------

    def _run(
        self,
        keys: Sequence[str],
        operation: Callable[[str], None],
    ) -> tuple[list[str], dict[str, str]]:
        """Apply ``operation`` to every key, bounded by ``max_workers``."""
        succeeded: list[str] = []
        failed: dict[str, str] = {}
        if not keys:
            return succeeded, failed

        workers = min(self.max_workers, len(keys))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="cred-sync") as pool:
            futures = {pool.submit(operation, key): key for key in keys}
            for future in as_completed(futures):
                key = futures[future]
                try:
                    future.result()
                except TargetAPIError as exc:
                    logger.warning("%s failed for %s: %s", self.target, key, exc.cause)
                    failed[key] = exc.cause
                except Exception as exc:
                    logger.exception("%s raised unexpectedly for %s", self.target, key)
                    failed[key] = f"unexpected error: {exc}"
                else:
                    succeeded.append(key)

        succeeded.sort()
        return succeeded, failed
