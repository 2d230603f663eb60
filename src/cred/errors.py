"""
Shared error taxonomy and process exit codes.

Every error the core raises derives from CredError and carries the
exit code the CLI reports for it. Codes are stable: scripts and JSON
consumers depend on them.
"""

from __future__ import annotations

from enum import IntEnum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .sync.models import SyncReport


class ExitCode(IntEnum):
    """Process exit codes surfaced to users."""

    OK = 0
    USER_ERROR = 1
    NOT_AUTHENTICATED = 2
    NETWORK_ERROR = 3
    TARGET_REJECTED = 4
    VAULT_ERROR = 5
    GIT_ERROR = 6


class CredError(Exception):
    """Base class for every error raised by cred."""

    exit_code: ExitCode = ExitCode.USER_ERROR

    @property
    def code_name(self) -> str:
        """Machine-readable name used in JSON error payloads."""
        return self.exit_code.name


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


class VaultIOError(CredError):
    """Reading or writing the vault file failed at the OS level."""

    exit_code = ExitCode.VAULT_ERROR


class VaultNotFound(CredError):
    """No vault file exists at the requested path."""

    exit_code = ExitCode.VAULT_ERROR


class CryptoError(CredError):
    """Authenticated decryption failed. Always fatal."""

    exit_code = ExitCode.VAULT_ERROR

    def __init__(self, message: str = "vault unreadable: wrong key or tampering"):
        super().__init__(message)


class MigrationError(CredError):
    """A decrypted payload does not match any known schema."""

    exit_code = ExitCode.VAULT_ERROR


# ---------------------------------------------------------------------------
# Input / identity
# ---------------------------------------------------------------------------


class ValidationError(CredError):
    """Bad user input, or a destructive action without confirmation."""


class UnknownKey(CredError):
    """One or more requested keys are not in the vault."""

    def __init__(self, keys: list[str] | str):
        self.keys = [keys] if isinstance(keys, str) else list(keys)
        super().__init__(
            f"Unknown key(s) not in vault: {', '.join(self.keys)}"
        )


class IdentityMismatch(CredError):
    """Supplied, detected, and recorded target identities disagree."""

    exit_code = ExitCode.GIT_ERROR


class MissingIdentity(CredError):
    """No target identity was recorded, detected, or supplied."""

    exit_code = ExitCode.GIT_ERROR


class ProjectNotFound(CredError):
    """No ``.cred`` directory in the working directory or its ancestors."""


class ProjectExists(CredError):
    """``init`` was run where a project already lives."""


class LockBusy(CredError):
    """Another invocation holds the project lock."""


# ---------------------------------------------------------------------------
# Credentials / targets
# ---------------------------------------------------------------------------


class CredentialNotFound(CredError):
    """The credential store has nothing under the requested reference."""

    exit_code = ExitCode.NOT_AUTHENTICATED


class TargetAPIError(CredError):
    """A target rejected (or never answered) a single-key operation."""

    exit_code = ExitCode.TARGET_REJECTED

    def __init__(self, key: Optional[str], cause: str):
        self.key = key
        self.cause = cause
        prefix = f"{key}: " if key else ""
        super().__init__(f"{prefix}{cause}")


class PartialFailure(CredError):
    """Some keys of a push or prune batch failed; the rest committed."""

    exit_code = ExitCode.TARGET_REJECTED

    def __init__(self, report: "SyncReport"):
        self.report = report
        super().__init__(
            f"{report.operation} to {report.target}: "
            f"{len(report.succeeded)} succeeded, {len(report.failed)} failed "
            f"({', '.join(sorted(report.failed))})"
        )
