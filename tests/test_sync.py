"""Tests for change tracking, push state, and the target synchronizer.

Covers:
- Dirty tracking: create -> skip -> update
- Push state persistence and corruption tolerance
- Push never deletes; prune never upserts and never edits the vault
- Identity checks fail before any remote call
- Partial failure commits only the successful keys
"""

from __future__ import annotations

import json

import pytest

from cred.crypto import digest
from cred.errors import (
    IdentityMismatch,
    MissingIdentity,
    PartialFailure,
    UnknownKey,
    ValidationError,
)
from cred.models import SecretEntry, utcnow
from cred.sync.engine import TargetSynchronizer
from cred.sync.models import ChangeKind, PushRecord, SyncOperation, SyncPlan, SyncReport
from cred.sync.state import PushStateStore
from cred.sync.tracker import build_push_plan, classify_change, dirty_keys, is_dirty
from cred.vault import Vault

from conftest import FakeTarget

REPO = "acme/app"


@pytest.fixture
def vault() -> Vault:
    v = Vault()
    for key, value in (("A", "1"), ("B", "2"), ("C", "3")):
        v.set(key, value)
    return v


@pytest.fixture
def state(tmp_path) -> PushStateStore:
    return PushStateStore.load(tmp_path / "push-state.json")


def _sync(vault, state, client, **kwargs) -> TargetSynchronizer:
    kwargs.setdefault("recorded_identity", REPO)
    return TargetSynchronizer(vault, state, client, **kwargs)


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class TestTracker:
    def _entry(self, value="x", hashed=True) -> SecretEntry:
        now = utcnow()
        return SecretEntry(
            value=value, hash=digest(value) if hashed else None,
            created_at=now, updated_at=now,
        )

    def test_no_record_is_create(self):
        assert classify_change(self._entry(), None) == ChangeKind.CREATE

    def test_same_hash_is_skip(self):
        record = PushRecord(last_pushed_hash=digest("x"))
        assert classify_change(self._entry("x"), record) == ChangeKind.SKIP
        assert not is_dirty(self._entry("x"), record)

    def test_changed_hash_is_update(self):
        record = PushRecord(last_pushed_hash=digest("old"))
        assert classify_change(self._entry("new"), record) == ChangeKind.UPDATE

    def test_missing_hash_is_always_dirty(self):
        record = PushRecord(last_pushed_hash=digest("x"))
        assert is_dirty(self._entry("x", hashed=False), record)
        assert classify_change(self._entry("x", hashed=False), record) == ChangeKind.UPDATE

    def test_dirty_keys(self, vault, state):
        assert dirty_keys(vault, state, "fake") == {"A", "B", "C"}
        state.record("fake", "A", digest("1"))
        assert dirty_keys(vault, state, "fake") == {"B", "C"}
        assert dirty_keys(vault, state, "other") == {"A", "B", "C"}

    def test_plan_buckets_sorted(self, vault, state):
        state.record("fake", "B", digest("2"))
        state.record("fake", "C", digest("stale"))
        plan = build_push_plan(vault, state, "fake", REPO, ["C", "A", "B"])
        assert plan.create == ("A",)
        assert plan.update == ("C",)
        assert plan.skip == ("B",)
        assert plan.actionable == ("A", "C")

    def test_plan_is_frozen(self, vault, state):
        plan = build_push_plan(vault, state, "fake", REPO, ["A"])
        with pytest.raises(Exception):
            plan.create = ()


# ---------------------------------------------------------------------------
# Push state
# ---------------------------------------------------------------------------


class TestPushState:
    def test_record_persists(self, tmp_path):
        path = tmp_path / "push-state.json"
        PushStateStore.load(path).record("github", "A", "h1")

        reloaded = PushStateStore.load(path)
        assert reloaded.get("github", "A").last_pushed_hash == "h1"
        assert json.loads(path.read_text())["targets"]["github"]["A"]["last_pushed_hash"] == "h1"

    def test_forget(self, tmp_path):
        path = tmp_path / "push-state.json"
        state = PushStateStore.load(path)
        state.record("github", "A", "h1")
        assert state.forget("github", "A")
        assert not state.forget("github", "A")
        assert PushStateStore.load(path).get("github", "A") is None
        assert state.targets() == []

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "push-state.json"
        path.write_text("{broken")
        state = PushStateStore.load(path)
        assert state.keys_for("github") == []

    def test_in_memory_store(self):
        state = PushStateStore()
        state.record("t", "K", "h")
        assert state.keys_for("t") == ["K"]


# ---------------------------------------------------------------------------
# Push
# ---------------------------------------------------------------------------


class TestPush:
    def test_create_skip_update_cycle(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target)

        plan = sync.push(dry_run=True)
        assert isinstance(plan, SyncPlan)
        assert plan.create == ("A", "B", "C")
        assert fake_target.calls == []

        report = sync.push()
        assert isinstance(report, SyncReport)
        assert report.succeeded == ["A", "B", "C"]
        assert fake_target.remote[REPO] == {"A": "1", "B": "2", "C": "3"}

        plan = sync.push(dry_run=True)
        assert plan.skip == ("A", "B", "C")
        assert plan.actionable == ()

        vault.set("B", "22")
        plan = sync.push(dry_run=True)
        assert plan.update == ("B",)

        fake_target.calls.clear()
        report = sync.push()
        assert report.succeeded == ["B"]
        assert report.skipped == ["A", "C"]
        assert fake_target.ops("upsert") == ["B"]

    def test_commits_digest_of_delivered_value(self, vault, state, fake_target):
        _sync(vault, state, fake_target).push(["A"])
        assert state.get("fake", "A").last_pushed_hash == digest("1")
        assert state.get("fake", "B") is None

    def test_never_deletes(self, vault, state, fake_target):
        state.record("fake", "GONE", "h")
        _sync(vault, state, fake_target).push()
        assert fake_target.ops("delete") == []
        assert state.get("fake", "GONE") is not None

    def test_unknown_keys_listed(self, vault, state, fake_target):
        with pytest.raises(UnknownKey) as exc_info:
            _sync(vault, state, fake_target).push(["A", "NOPE", "ALSO"])
        assert exc_info.value.keys == ["ALSO", "NOPE"]
        assert fake_target.calls == []

    def test_legacy_entry_always_pushed(self, state, fake_target):
        now = utcnow()
        vault = Vault({"L": SecretEntry(value="v", created_at=now, updated_at=now)})
        state.record("fake", "L", digest("v"))
        plan = _sync(vault, state, fake_target).push(dry_run=True)
        assert plan.update == ("L",)

    def test_partial_failure(self, vault, state):
        client = FakeTarget(reject={"B"})
        report = _sync(vault, state, client, max_workers=1).push()

        assert report.succeeded == ["A", "C"]
        assert list(report.failed) == ["B"]
        assert "422" in report.failed["B"]
        assert state.keys_for("fake") == ["A", "C"]
        assert not report.ok
        with pytest.raises(PartialFailure) as exc_info:
            report.raise_for_failures()
        assert exc_info.value.exit_code == 4

    def test_retry_after_failure_only_sends_failed(self, vault, state):
        client = FakeTarget(reject={"B"})
        sync = _sync(vault, state, client)
        sync.push()

        client.reject.clear()
        client.calls.clear()
        report = sync.push()
        assert report.succeeded == ["B"]
        assert client.ops("upsert") == ["B"]

    def test_unexpected_error_is_reported_per_key(self, vault, state):
        class Flaky(FakeTarget):
            def upsert(self, identity, key, value, fmt):
                if key == "B":
                    raise KeyError("key_id")
                super().upsert(identity, key, value, fmt)

        report = _sync(vault, state, Flaky()).push()
        assert report.succeeded == ["A", "C"]
        assert "unexpected error" in report.failed["B"]
        assert state.keys_for("fake") == ["A", "C"]

    def test_identity_validated_before_any_call(self, vault, state):
        class Strict(FakeTarget):
            def validate_identity(self, identity):
                raise ValidationError(f"bad identity {identity}")

        client = Strict()
        with pytest.raises(ValidationError, match="bad identity"):
            _sync(vault, state, client).push()
        assert client.calls == []

    def test_concurrent_push(self, state, fake_target):
        vault = Vault()
        for i in range(20):
            vault.set(f"K{i:02d}", str(i))
        report = _sync(vault, state, fake_target, max_workers=8).push()
        assert len(report.succeeded) == 20
        assert len(state.keys_for("fake")) == 20


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class TestIdentity:
    def test_supplied_vs_recorded(self, vault, state, fake_target):
        with pytest.raises(IdentityMismatch, match="bound repo"):
            _sync(vault, state, fake_target).push(identity="evil/fork")
        assert fake_target.calls == []

    def test_supplied_vs_detected(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target, recorded_identity=None,
                     detected_identity="acme/other")
        with pytest.raises(IdentityMismatch, match="detected repo"):
            sync.push(identity=REPO)
        assert fake_target.calls == []

    def test_detected_vs_recorded(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target, detected_identity="acme/other")
        with pytest.raises(IdentityMismatch):
            sync.prune(["A"], confirmed=True)
        assert fake_target.calls == []

    def test_missing(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target, recorded_identity=None)
        with pytest.raises(MissingIdentity):
            sync.push()
        with pytest.raises(MissingIdentity):
            sync.prune(select_all=True, confirmed=True)
        assert fake_target.calls == []

    def test_supplied_when_nothing_recorded(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target, recorded_identity=None)
        report = sync.push(identity="acme/new")
        assert report.identity == "acme/new"
        assert set(fake_target.remote["acme/new"]) == {"A", "B", "C"}


# ---------------------------------------------------------------------------
# Prune
# ---------------------------------------------------------------------------


class TestPrune:
    def test_never_upserts_nor_touches_vault(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target)
        sync.push()
        before = vault.list_entries()
        fake_target.calls.clear()

        report = sync.prune(select_all=True, confirmed=True)
        assert report.operation == SyncOperation.PRUNE
        assert report.succeeded == ["A", "B", "C"]
        assert fake_target.ops("upsert") == []
        assert vault.list_entries() == before
        assert state.keys_for("fake") == []

    def test_all_uses_push_state_not_vault(self, vault, state, fake_target):
        state.record("fake", "OLD", "h")
        plan = _sync(vault, state, fake_target).prune(select_all=True, dry_run=True)
        assert plan.delete == ("OLD",)

    def test_explicit_keys_without_state(self, vault, state, fake_target):
        report = _sync(vault, state, fake_target).prune(["X"], confirmed=True)
        assert report.succeeded == ["X"]
        assert fake_target.ops("delete") == ["X"]

    def test_requires_confirmation(self, vault, state, fake_target):
        with pytest.raises(ValidationError, match="--yes"):
            _sync(vault, state, fake_target).prune(["A"])
        assert fake_target.calls == []

    def test_dry_run_needs_no_confirmation(self, vault, state, fake_target):
        plan = _sync(vault, state, fake_target).prune(["B", "A"], dry_run=True)
        assert plan.delete == ("A", "B")
        assert fake_target.calls == []

    def test_needs_keys_or_all(self, vault, state, fake_target):
        sync = _sync(vault, state, fake_target)
        with pytest.raises(ValidationError):
            sync.prune(confirmed=True)
        with pytest.raises(ValidationError):
            sync.prune(["A"], select_all=True, confirmed=True)

    def test_partial_failure_keeps_state(self, vault, state):
        client = FakeTarget(reject={"B"})
        for key in ("A", "B"):
            state.record("fake", key, "h")
        report = _sync(vault, state, client).prune(select_all=True, confirmed=True)
        assert report.succeeded == ["A"]
        assert list(report.failed) == ["B"]
        assert state.keys_for("fake") == ["B"]
