"""
Project discovery, initialization, git identity, and status.

A project is any directory holding a ``.cred/`` folder::

    .cred/
    ├── project.yaml      # name, id, recorded git identity
    ├── vault.enc         # encrypted secrets
    ├── push-state.json   # last hash delivered per target/key
    ├── audit.log         # JSONL audit trail
    └── .lock             # advisory lock

The vault key never touches this directory; it lives in the credential
store under the project id.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from . import CRED_DIR_NAME
from .crypto import KEY_SIZE, generate_key
from .errors import (
    CredentialNotFound,
    CredError,
    IdentityMismatch,
    MissingIdentity,
    ProjectExists,
    ProjectNotFound,
    ValidationError,
)
from .fileio import atomic_write_text
from .keystore import CredentialStore, master_key_from_env
from .models import ProjectConfig
from .vault import Vault, load_vault, save_vault

logger = logging.getLogger("cred.project")

PROJECT_FILE = "project.yaml"
VAULT_FILE = "vault.enc"
PUSH_STATE_FILE = "push-state.json"

_GITHUB_PREFIXES = (
    "git@github.com:",
    "ssh://git@github.com/",
    "https://github.com/",
)


@dataclass
class GitInfo:
    """Git context of a working tree."""

    root: str
    remote: str
    repo_slug: Optional[str] = None


class ProjectStatus(BaseModel):
    """Snapshot used by ``cred status``."""

    is_project: bool = False
    project_name: Optional[str] = None
    vault_exists: bool = False
    vault_accessible: bool = False
    vault_migrated: bool = False
    secret_count: int = 0
    git_detected: bool = False
    git_root: Optional[str] = None
    git_bound: bool = False
    git_remote_current: Optional[str] = None
    git_remote_bound: Optional[str] = None
    targets_configured: list[str] = Field(default_factory=list)
    ready_for_push: bool = False


class Project:
    """Paths and metadata for one project root."""

    def __init__(self, root: Path):
        self.root = root
        self.cred_dir = root / CRED_DIR_NAME

    def __repr__(self) -> str:
        return f"Project({self.root})"

    @property
    def vault_path(self) -> Path:
        return self.cred_dir / VAULT_FILE

    @property
    def config_path(self) -> Path:
        return self.cred_dir / PROJECT_FILE

    @property
    def push_state_path(self) -> Path:
        return self.cred_dir / PUSH_STATE_FILE

    @classmethod
    def find(cls, start: Optional[Path] = None) -> "Project":
        """Locate the nearest ancestor holding a ``.cred`` directory.

        Raises:
            ProjectNotFound: No project above ``start``.
        """
        current = (start or Path.cwd()).resolve()
        for candidate in (current, *current.parents):
            if (candidate / CRED_DIR_NAME).is_dir():
                return cls(candidate)
        raise ProjectNotFound(
            f"No {CRED_DIR_NAME} directory found. Run 'cred init' to start."
        )

    def load_config(self) -> ProjectConfig:
        """Read ``project.yaml`` (defaults if the file is missing)."""
        if not self.config_path.exists():
            return ProjectConfig()
        try:
            data = yaml.safe_load(self.config_path.read_text(encoding="utf-8")) or {}
            return ProjectConfig(**data)
        except (yaml.YAMLError, PydanticValidationError, TypeError) as exc:
            raise ValidationError(f"Failed to parse {self.config_path}: {exc}") from exc

    def save_config(self, config: ProjectConfig) -> None:
        header = "# cred project configuration\n"
        body = yaml.safe_dump(
            config.model_dump(mode="json"), default_flow_style=False, sort_keys=False
        )
        atomic_write_text(self.config_path, header + body)

    @property
    def recorded_identity(self) -> Optional[str]:
        return self.load_config().git_repo

    def master_key(
        self,
        store: CredentialStore,
        env: Optional[Mapping[str, str]] = None,
    ) -> bytes:
        """Fetch the 32-byte vault key.

        ``CRED_MASTER_KEY_B64`` wins (CI); otherwise the credential store
        entry named by the project id.
        """
        override = master_key_from_env(env)
        if override is not None:
            return override

        config = self.load_config()
        try:
            key = store.get(str(config.id))
        except CredentialNotFound:
            raise CredentialNotFound(
                f"Encryption key for project {config.id} not found in the "
                f"{store.name} credential store."
            ) from None
        if len(key) != KEY_SIZE:
            raise CredentialNotFound("Invalid key length in credential store")
        return key

    def load_vault(self, key: bytes) -> Vault:
        return load_vault(self.vault_path, key)

    def save_vault(self, vault: Vault, key: bytes) -> None:
        save_vault(self.vault_path, key, vault)

    def rebind(self, git_info: Optional[GitInfo]) -> ProjectConfig:
        """Re-record the git identity. The only way it ever changes."""
        config = self.load_config()
        config.git_root = git_info.root if git_info else None
        config.git_repo = git_info.repo_slug if git_info else None
        self.save_config(config)
        logger.info("Project identity rebound to %s", config.git_repo)
        return config


def init_project(
    root: Path,
    store: CredentialStore,
    name: Optional[str] = None,
    git_info: Optional[GitInfo] = None,
) -> Project:
    """Create ``.cred/``, a vault key, an empty vault, and project.yaml.

    Args:
        root: Directory to initialize.
        store: Where the generated vault key is kept.
        name: Project name (defaults to the directory name).
        git_info: Identity to record; None records nothing.

    Raises:
        ProjectExists: ``root`` already has a ``.cred`` directory.
    """
    project = Project(root)
    if project.cred_dir.exists():
        raise ProjectExists(f"cred is already initialized here: {project.cred_dir}")
    project.cred_dir.mkdir(parents=True)

    config = ProjectConfig(
        name=name or root.name or "my-project",
        git_root=git_info.root if git_info else None,
        git_repo=git_info.repo_slug if git_info else None,
    )
    project.save_config(config)

    key = generate_key()
    store.put(str(config.id), key)
    save_vault(project.vault_path, key, Vault())

    update_gitignore(root)
    logger.info("Initialized project %s (%s)", config.name, config.id)
    return project


def update_gitignore(root: Path) -> bool:
    """Make sure ``.cred/`` is ignored. Returns True if the file changed."""
    gitignore = root / ".gitignore"
    entry = f"{CRED_DIR_NAME}/"
    content = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    if entry in content.splitlines():
        return False

    prefix = "" if not content or content.endswith("\n") else "\n"
    with gitignore.open("a", encoding="utf-8") as f:
        f.write(f"{prefix}{entry}\n")
    return True


# ---------------------------------------------------------------------------
# Git identity
# ---------------------------------------------------------------------------


def normalize_github_remote(remote: str) -> Optional[str]:
    """Reduce common GitHub remote URL forms to ``owner/repo``."""
    trimmed = remote.strip()
    if trimmed.endswith(".git"):
        trimmed = trimmed[: -len(".git")]

    for prefix in _GITHUB_PREFIXES:
        if trimmed.startswith(prefix):
            remainder = trimmed[len(prefix):]
            break
    else:
        return None

    parts = remainder.split("/")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return f"{parts[0]}/{parts[1]}"


def _git(args: list[str], cwd: Path) -> Optional[str]:
    try:
        result = subprocess.run(
            ["git", *args],
            capture_output=True, text=True, check=False, cwd=str(cwd),
        )
    except OSError:
        return None
    output = result.stdout.strip()
    if result.returncode != 0 or not output:
        return None
    return output


def detect_git(base: Optional[Path] = None) -> Optional[GitInfo]:
    """Detect git root, origin URL, and GitHub slug for ``base``."""
    base_dir = base or Path.cwd()
    root_raw = _git(["rev-parse", "--show-toplevel"], base_dir)
    if root_raw is None:
        return None

    root = str(Path(root_raw).resolve())
    remote = _git(["config", "--get", "remote.origin.url"], Path(root)) or ""
    return GitInfo(
        root=root,
        remote=remote,
        repo_slug=normalize_github_remote(remote) if remote else None,
    )


def resolve_identity(
    recorded: Optional[str],
    supplied: Optional[str] = None,
    detected: Optional[str] = None,
    verb: str = "push",
) -> str:
    """Pick the identity a push/prune will address.

    Any disagreement between what the caller supplied, what the working
    tree reports, and what the project recorded at init is refused.

    Raises:
        IdentityMismatch: Two available identities differ.
        MissingIdentity: Nothing to go on.
    """
    if supplied is not None:
        if detected is not None and detected != supplied:
            raise IdentityMismatch(
                f"Refusing to {verb}: provided --repo '{supplied}' does not "
                f"match detected repo '{detected}'."
            )
        if recorded is not None and recorded != supplied:
            raise IdentityMismatch(
                f"Refusing to {verb}: provided --repo '{supplied}' does not "
                f"match bound repo '{recorded}'."
            )
        return supplied

    if detected is not None:
        if recorded is not None and recorded != detected:
            raise IdentityMismatch(
                f"Refusing to {verb}: detected repo '{detected}' does not "
                f"match bound repo '{recorded}'."
            )
        return detected

    if recorded is not None:
        return recorded

    raise MissingIdentity(
        f"Cannot {verb}: no repository identity. Provide --repo owner/name "
        "or initialize inside a git repo so it can be recorded."
    )


def project_status(
    start: Optional[Path],
    store: CredentialStore,
    targets_configured: list[str],
    git_info: Optional[GitInfo] = None,
) -> ProjectStatus:
    """Gather what ``cred status`` reports. Never raises for a missing project."""
    status = ProjectStatus(targets_configured=sorted(targets_configured))
    if git_info is not None:
        status.git_detected = True
        status.git_root = git_info.root
        status.git_remote_current = git_info.repo_slug

    try:
        project = Project.find(start)
    except ProjectNotFound:
        return status

    config = project.load_config()
    status.is_project = True
    status.project_name = config.name
    status.git_remote_bound = config.git_repo
    status.git_bound = config.git_repo is not None
    status.vault_exists = project.vault_path.exists()

    if status.vault_exists:
        try:
            vault = project.load_vault(project.master_key(store))
        except CredError as exc:
            logger.debug("Vault not accessible: %s", exc)
        else:
            status.vault_accessible = True
            status.vault_migrated = vault.migrated
            status.secret_count = len(vault)

    status.ready_for_push = (
        status.vault_accessible
        and bool(status.targets_configured)
        and (status.git_bound or status.git_remote_current is not None)
    )
    return status
