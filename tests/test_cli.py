"""End-to-end CLI tests with an in-memory credential store and a fake target.

Covers:
- init, status, secret set/get/list/describe/remove
- import/export
- target set/list/revoke
- push and prune, including dry-run, CI forcing, identity and partial failure
- JSON envelopes and exit codes
"""

from __future__ import annotations

import json

import pytest
from click.testing import CliRunner

from cred.cli import main
from cred.keystore import MemoryStore
from cred.project import GitInfo, Project

REPO = "acme/app"


def _payload(result) -> dict:
    """The JSON envelope printed by a --json invocation."""
    lines = [line for line in result.output.splitlines() if line.startswith('{"api_version"')]
    assert lines, result.output
    return json.loads(lines[-1])


@pytest.fixture
def cli_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def git_repo(monkeypatch, project_dir):
    """Pretend the working directory is a clone of acme/app."""
    info = GitInfo(root=str(project_dir), remote=f"git@github.com:{REPO}.git", repo_slug=REPO)
    for module in ("init_cmd", "status", "sync_cmd"):
        monkeypatch.setattr(f"cred.cli.{module}.detect_git", lambda base=None: info)
    return info


@pytest.fixture
def invoke(cli_store):
    runner = CliRunner()

    def run(*args: str):
        return runner.invoke(main, list(args), obj={"store": cli_store})

    return run


@pytest.fixture
def project(invoke, git_repo, project_dir):
    result = invoke("init", "--name", "demo")
    assert result.exit_code == 0, result.output
    return Project(project_dir)


@pytest.fixture
def seeded(invoke, project, registered_fake):
    for key, value in (("A", "1"), ("B", "2"), ("C", "3")):
        assert invoke("secret", "set", key, value).exit_code == 0
    assert invoke("target", "set", "fake", "--token", "t0k").exit_code == 0
    return registered_fake


class TestInitAndStatus:
    def test_init(self, invoke, git_repo, project_dir, cli_store):
        result = invoke("--json", "init")
        assert result.exit_code == 0, result.output
        data = _payload(result)["data"]
        assert data["git_repo"] == REPO
        assert cli_store.get(data["id"])
        assert (project_dir / ".cred" / "vault.enc").exists()

    def test_init_twice(self, invoke, project):
        result = invoke("init")
        assert result.exit_code == 1
        assert "already initialized" in result.output

    def test_init_dry_run(self, invoke, git_repo, project_dir):
        result = invoke("init", "--dry-run")
        assert result.exit_code == 0
        assert not (project_dir / ".cred").exists()

    def test_status_json(self, invoke, project):
        invoke("secret", "set", "A", "1")
        result = invoke("status", "--json")
        data = _payload(result)["data"]
        assert data["is_project"]
        assert data["secret_count"] == 1
        assert data["git_remote_bound"] == REPO

    def test_no_project(self, invoke, project_dir):
        result = invoke("--json", "secret", "list")
        assert result.exit_code == 1
        payload = _payload(result)
        assert payload["status"] == "error"
        assert payload["error"]["code"] == "USER_ERROR"


class TestSecrets:
    def test_set_get(self, invoke, project):
        assert invoke("secret", "set", "API_KEY", "sk-1").exit_code == 0
        result = invoke("secret", "get", "API_KEY")
        assert result.output.strip() == "sk-1"

    def test_get_json(self, invoke, project):
        invoke("secret", "set", "API_KEY", "sk-1")
        data = _payload(invoke("secret", "get", "API_KEY", "--json"))["data"]
        assert data == {"key": "API_KEY", "value": "sk-1"}

    def test_get_unknown(self, invoke, project):
        result = invoke("secret", "get", "NOPE")
        assert result.exit_code == 1

    def test_list_masks_values(self, invoke, project):
        invoke("secret", "set", "API_KEY", "sk-very-secret")
        result = invoke("secret", "list")
        assert "API_KEY" in result.output
        assert "sk-very-secret" not in result.output

    def test_list_json(self, invoke, project):
        invoke("secret", "set", "B", "2")
        invoke("secret", "set", "A", '{"x": 1}')
        data = _payload(invoke("--json", "secret", "list"))["data"]
        assert data["keys"] == ["A", "B"]
        assert data["entries"][0]["format"] == "json"

    def test_set_explicit_format_and_description(self, invoke, project):
        invoke("secret", "set", "K", "hello", "--format", "pem", "-d", "odd one")
        data = _payload(invoke("--json", "secret", "list"))["data"]
        assert data["entries"][0]["format"] == "pem"
        assert data["entries"][0]["description"] == "odd one"

    def test_set_non_interactive_without_value(self, invoke, project):
        result = invoke("--non-interactive", "secret", "set", "K")
        assert result.exit_code == 1

    def test_set_dry_run(self, invoke, project):
        invoke("--dry-run", "secret", "set", "K", "v")
        assert invoke("secret", "get", "K").exit_code == 1

    def test_describe(self, invoke, project):
        invoke("secret", "set", "K", "v")
        assert invoke("secret", "describe", "K", "prod token").exit_code == 0
        data = _payload(invoke("--json", "secret", "list"))["data"]
        assert data["entries"][0]["description"] == "prod token"

    def test_remove_requires_yes(self, invoke, project):
        invoke("secret", "set", "K", "v")
        result = invoke("secret", "remove", "K")
        assert result.exit_code == 1
        assert "--yes" in result.output
        assert invoke("secret", "get", "K").exit_code == 0

    def test_remove(self, invoke, project):
        invoke("secret", "set", "K", "v")
        data = _payload(invoke("secret", "remove", "K", "--yes", "--json"))["data"]
        assert data["removed"] is True
        assert invoke("secret", "get", "K").exit_code == 1

    def test_remove_dry_run_needs_no_yes(self, invoke, project):
        invoke("secret", "set", "K", "v")
        assert invoke("--dry-run", "secret", "remove", "K").exit_code == 0
        assert invoke("secret", "get", "K").exit_code == 0


class TestImportExport:
    def test_import(self, invoke, project, project_dir):
        env = project_dir / "in.env"
        env.write_text("A=1\nB=2\n")
        data = _payload(invoke("--json", "import", str(env)))["data"]
        assert (data["added"], data["skipped"]) == (2, 0)

        data = _payload(invoke("--json", "import", str(env)))["data"]
        assert (data["added"], data["skipped"]) == (0, 2)

    def test_import_bad_line(self, invoke, project, project_dir):
        env = project_dir / "in.env"
        env.write_text("NOPE\n")
        assert invoke("import", str(env)).exit_code == 1

    def test_export(self, invoke, project, project_dir):
        invoke("secret", "set", "B", "2")
        invoke("secret", "set", "A", "1")
        out = project_dir / "out.env"
        assert invoke("export", str(out)).exit_code == 0
        assert out.read_text() == 'A="1"\nB="2"\n'
        assert invoke("export", str(out)).exit_code == 1
        assert invoke("export", str(out), "--force").exit_code == 0


class TestTargets:
    def test_set_list_revoke(self, invoke, project, registered_fake, cli_store):
        assert invoke("target", "set", "fake", "--token", "t0k").exit_code == 0
        assert cli_store.get("cred:target:fake:default") == b"t0k"
        assert _payload(invoke("--json", "target", "list"))["data"]["targets"] == ["fake"]

        assert invoke("target", "revoke", "fake").exit_code == 1
        assert invoke("target", "revoke", "fake", "--yes").exit_code == 0
        assert _payload(invoke("--json", "target", "list"))["data"]["targets"] == []

    def test_unknown_target(self, invoke, project):
        assert invoke("target", "set", "nowhere", "--token", "x").exit_code == 1

    def test_non_interactive_needs_token(self, invoke, project, registered_fake):
        result = invoke("--json", "--non-interactive", "target", "set", "fake")
        assert result.exit_code == 1
        assert "--token" in _payload(result)["error"]["message"]


class TestPush:
    def test_push_then_skip(self, invoke, seeded):
        result = invoke("--json", "push", "fake")
        assert result.exit_code == 0, result.output
        assert _payload(result)["data"]["succeeded"] == ["A", "B", "C"]
        assert seeded.remote[REPO] == {"A": "1", "B": "2", "C": "3"}

        seeded.calls.clear()
        data = _payload(invoke("--json", "push", "fake"))["data"]
        assert data["succeeded"] == []
        assert data["skipped"] == ["A", "B", "C"]
        assert seeded.calls == []

    def test_dry_run_plan(self, invoke, seeded):
        invoke("push", "fake", "A")
        invoke("secret", "set", "A", "changed")
        data = _payload(invoke("push", "fake", "--dry-run", "--json"))["data"]
        assert data["will_create"] == ["B", "C"]
        assert data["will_update"] == ["A"]
        assert data["will_delete"] == []
        assert seeded.ops("upsert") == ["A"]

    def test_no_token(self, invoke, project, registered_fake):
        result = invoke("--json", "push", "fake")
        assert result.exit_code == 2
        assert _payload(result)["error"]["code"] == "NOT_AUTHENTICATED"

    def test_identity_mismatch(self, invoke, seeded):
        result = invoke("--json", "push", "fake", "--repo", "evil/fork")
        assert result.exit_code == 6
        assert _payload(result)["error"]["code"] == "GIT_ERROR"
        assert seeded.calls == []

    def test_unknown_key(self, invoke, seeded):
        result = invoke("push", "fake", "NOPE")
        assert result.exit_code == 1
        assert seeded.calls == []

    def test_partial_failure(self, invoke, seeded):
        seeded.reject.add("B")
        result = invoke("--json", "push", "fake")
        assert result.exit_code == 4
        error = _payload(result)["error"]
        assert error["code"] == "TARGET_REJECTED"
        assert error["report"]["succeeded"] == ["A", "C"]
        assert list(error["report"]["failed"]) == ["B"]

    def test_audit_logged(self, invoke, seeded, project_dir):
        invoke("push", "fake")
        log = (project_dir / ".cred" / "audit.log").read_text()
        assert '"event_type":"PUSH"' in log
        assert "sk-" not in log


class TestPrune:
    def test_requires_yes(self, invoke, seeded):
        invoke("push", "fake")
        result = invoke("--json", "prune", "fake", "--all")
        assert result.exit_code == 1
        assert seeded.ops("delete") == []

    def test_prune_all(self, invoke, seeded):
        invoke("push", "fake")
        result = invoke("--json", "--yes", "prune", "fake", "--all")
        assert result.exit_code == 0, result.output
        assert _payload(result)["data"]["succeeded"] == ["A", "B", "C"]
        assert seeded.remote[REPO] == {}
        assert seeded.ops("upsert") == ["A", "B", "C"]
        assert invoke("secret", "get", "A").output.strip() == "1"

    def test_dry_run(self, invoke, seeded):
        data = _payload(invoke("--json", "prune", "fake", "A", "B", "--dry-run"))["data"]
        assert data["will_delete"] == ["A", "B"]
        assert seeded.ops("delete") == []

    def test_ci_forces_dry_run(self, invoke, seeded, monkeypatch):
        invoke("push", "fake")
        monkeypatch.setenv("CI", "true")
        result = invoke("--json", "prune", "fake", "--all")
        assert result.exit_code == 0
        assert _payload(result)["data"]["dry_run"] is True
        assert seeded.ops("delete") == []

    def test_needs_keys_or_all(self, invoke, seeded):
        assert invoke("--yes", "prune", "fake").exit_code == 1


class TestConfig:
    def test_set_get_unset(self, invoke, project_dir):
        assert invoke("config", "set", "preferences.max_workers", "8").exit_code == 0
        assert invoke("config", "get", "preferences.max_workers").output.strip() == "8"
        assert invoke("config", "unset", "preferences.max_workers").exit_code == 1
        assert invoke("config", "unset", "preferences.max_workers", "--yes").exit_code == 0
        assert invoke("config", "get", "preferences.max_workers").output.strip() == "(not set)"

    def test_invalid_value(self, invoke, project_dir):
        result = invoke("--json", "config", "set", "preferences.max_workers", "zero")
        assert result.exit_code == 1

    def test_list_json(self, invoke, project_dir):
        data = _payload(invoke("--json", "config", "list"))["data"]
        assert "preferences" in data["config"]
