"""Shared test fixtures for cred."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Optional

import pytest

from cred.crypto import generate_key
from cred.errors import TargetAPIError
from cred.formats import SecretFormat
from cred.keystore import MemoryStore
from cred.sync.targets import TargetClient, _TARGETS


class FakeTarget(TargetClient):
    """In-memory target that records every call.

    ``reject`` names keys whose upsert/delete fails with TargetAPIError.
    """

    def __init__(self, name: str = "fake", reject: Optional[set[str]] = None):
        self._name = name
        self.reject = set(reject or ())
        self.remote: dict[str, dict[str, str]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def upsert(self, identity: str, key: str, value: str, fmt: SecretFormat) -> None:
        with self._lock:
            self.calls.append(("upsert", identity, key))
        if key in self.reject:
            raise TargetAPIError(key, "HTTP 422")
        with self._lock:
            self.remote.setdefault(identity, {})[key] = value

    def delete(self, identity: str, key: str) -> None:
        with self._lock:
            self.calls.append(("delete", identity, key))
        if key in self.reject:
            raise TargetAPIError(key, "HTTP 500")
        with self._lock:
            self.remote.get(identity, {}).pop(key, None)

    def ops(self, op: str) -> list[str]:
        return sorted(key for kind, _, key in self.calls if kind == op)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path: Path):
    """Isolate every test from the developer's environment."""
    for var in ("CI", "CRED_MASTER_KEY_B64", "CRED_KEYSTORE", "CRED_TARGET_TOKEN"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("CRED_CONFIG_DIR", str(tmp_path / "config"))


@pytest.fixture
def vault_key() -> bytes:
    return generate_key()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def fake_target() -> FakeTarget:
    return FakeTarget()


@pytest.fixture
def registered_fake(fake_target: FakeTarget):
    """Register ``fake_target`` under the name ``fake`` for the test."""
    _TARGETS["fake"] = lambda token, **options: fake_target
    yield fake_target
    _TARGETS.pop("fake", None)


@pytest.fixture
def project_dir(tmp_path: Path, monkeypatch) -> Path:
    """An empty working directory, made current."""
    root = tmp_path / "work"
    root.mkdir()
    monkeypatch.chdir(root)
    return root
