"""Shared utilities for all CLI command modules.

Provides the Rich consoles, the global flag plumbing, JSON payload
helpers, and the project/vault openers every command group uses.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

import click
from rich.console import Console
from rich.markup import escape

from ..config import resolve_config_dir
from ..errors import CredError, PartialFailure, ValidationError
from ..keystore import CredentialStore, resolve_store
from ..project import Project
from ..vault import Vault

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger("cred.cli")

API_VERSION = "1"

FLAG_NAMES = ("json", "non_interactive", "dry_run", "yes")

_GLOBAL_FLAGS = (
    (("--json",), "Machine-readable JSON output; no prose or tables."),
    (("--non-interactive",), "Never prompt; fail if input is required."),
    (("--dry-run",), "Show what would change without changing anything."),
    (("--yes", "-y"), "Confirm destructive actions."),
)


# ---------------------------------------------------------------------------
# Global flags
# ---------------------------------------------------------------------------


def _set_flag(ctx: click.Context, param: click.Parameter, value: bool) -> None:
    if value:
        ctx.ensure_object(dict)[param.name] = True


def global_flags(f):
    """Accept the global flags after the subcommand name too.

    ``cred push github --dry-run`` and ``cred --dry-run push github``
    mean the same thing.
    """
    for decls, help_text in reversed(_GLOBAL_FLAGS):
        f = click.option(
            *decls, is_flag=True, expose_value=False, callback=_set_flag, help=help_text,
        )(f)
    return f


def opts() -> dict:
    """The shared ``ctx.obj`` dict (flags plus injected services)."""
    return click.get_current_context().ensure_object(dict)


def is_json() -> bool:
    return bool(opts().get("json"))


def is_dry_run() -> bool:
    return bool(opts().get("dry_run"))


def assume_yes() -> bool:
    return bool(opts().get("yes"))


def is_non_interactive() -> bool:
    return bool(opts().get("non_interactive"))


def require_yes(action: str) -> None:
    """Refuse a destructive action unless ``--yes`` was given."""
    if not assume_yes():
        raise ValidationError(f"{action} is destructive; rerun with --yes")


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


def get_config_dir() -> Path:
    obj = opts()
    if obj.get("config_dir") is None:
        obj["config_dir"] = resolve_config_dir()
    return Path(obj["config_dir"])


def get_store() -> CredentialStore:
    """The credential store for this invocation (tests inject one)."""
    obj = opts()
    if obj.get("store") is None:
        obj["store"] = resolve_store(config_dir=get_config_dir())
    return obj["store"]


def open_vault(project: Optional[Project] = None) -> tuple[Project, bytes, Vault]:
    """Find the project, fetch its key, and load the vault."""
    project = project or Project.find()
    key = project.master_key(get_store())
    vault = project.load_vault(key)
    if vault.migrated:
        logger.info("Vault loaded from the legacy schema; it is upgraded on next save")
    return project, key, vault


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def print_json(data: Any = None) -> None:
    payload = {"api_version": API_VERSION, "status": "ok", "data": data}
    click.echo(json.dumps(payload, default=str))


def say(message: str) -> None:
    """Human output; silent in JSON mode."""
    if not is_json():
        console.print(message)


def report_error(exc: CredError, json_mode: bool) -> None:
    """Print ``exc`` as the JSON error envelope or a red line on stderr."""
    if json_mode:
        error: dict[str, Any] = {"code": exc.code_name, "message": str(exc)}
        if isinstance(exc, PartialFailure):
            error["report"] = exc.report.model_dump(mode="json")
        click.echo(json.dumps(
            {"api_version": API_VERSION, "status": "error", "error": error}
        ))
    else:
        err_console.print(f"[bold red]Error:[/] {escape(str(exc))}")


def format_age(age: timedelta) -> str:
    """Compact relative age: ``just now``, ``5m ago``, ``3h ago``, ``2d ago``."""
    seconds = int(age.total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"
