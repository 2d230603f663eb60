"""Sync commands: push secrets to a target, prune them from it."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from ._common import (
    assume_yes,
    console,
    err_console,
    get_config_dir,
    get_store,
    global_flags,
    is_dry_run,
    is_json,
    open_vault,
    print_json,
    say,
)
from ..audit import audit_event
from ..config import get_target_token, load_config
from ..errors import CredentialNotFound, PartialFailure, ValidationError
from ..lock import project_lock
from ..project import Project, detect_git
from ..sync.engine import TargetSynchronizer
from ..sync.models import SyncPlan, SyncReport
from ..sync.state import PushStateStore
from ..sync.targets import available_targets, create_target


def _synchronizer(project: Project, target: str) -> TargetSynchronizer:
    """Wire vault, push state, client, and identities for one run."""
    if target not in available_targets():
        raise ValidationError(
            f"Target '{target}' not supported. Available: {', '.join(available_targets())}"
        )
    store = get_store()
    config_dir = get_config_dir()
    token = get_target_token(target, store, config_dir)
    if token is None:
        raise CredentialNotFound(
            f"No token found for {target}. Run 'cred target set {target}' first."
        )
    prefs = load_config(config_dir).preferences

    project, _, vault = open_vault(project)
    git_info = detect_git(Path.cwd())
    return TargetSynchronizer(
        vault,
        PushStateStore.load(project.push_state_path),
        create_target(target, token, timeout=prefs.http_timeout),
        recorded_identity=project.recorded_identity,
        detected_identity=git_info.repo_slug if git_info else None,
        max_workers=prefs.max_workers,
    )


def _plan_data(plan: SyncPlan) -> dict:
    return {
        "target": plan.target,
        "repo": plan.identity,
        "dry_run": True,
        "will_create": list(plan.create),
        "will_update": list(plan.update),
        "will_skip": list(plan.skip),
        "will_delete": list(plan.delete),
    }


def _render_plan(plan: SyncPlan) -> None:
    console.print(f"(dry-run) No remote changes. Target: [cyan]{plan.target}[/] "
                  f"Repo: [cyan]{plan.identity}[/]")
    for label, keys, style in (
        ("create", plan.create, "green"),
        ("update", plan.update, "yellow"),
        ("delete", plan.delete, "red"),
        ("unchanged", plan.skip, "dim"),
    ):
        if keys:
            console.print(f"  [{style}]{label}:[/] {', '.join(keys)}")
    if not plan.actionable:
        console.print("  Nothing to do.")


def _render_report(report: SyncReport) -> None:
    table = Table(title=f"{report.operation} {report.target}:{report.identity}")
    table.add_column("Key", style="cyan")
    table.add_column("Result")
    for key in report.succeeded:
        table.add_row(key, "[green]ok[/]")
    for key, cause in sorted(report.failed.items()):
        table.add_row(key, f"[red]failed[/] {cause}")
    for key in report.skipped:
        table.add_row(key, "[dim]unchanged[/]")
    if report.succeeded or report.failed or report.skipped:
        console.print(table)
    else:
        console.print("Nothing to do.")


def _finish(project: Project, report: SyncReport, event: str) -> None:
    audit_event(
        project.cred_dir, event,
        f"{report.operation} {report.target}:{report.identity}",
        metadata={"succeeded": report.succeeded, "failed": sorted(report.failed)},
    )
    if not is_json():
        _render_report(report)
    if report.failed:
        raise PartialFailure(report)
    if is_json():
        print_json(report.model_dump(mode="json"))


def register_sync_commands(main: click.Group) -> None:
    """Register push and prune."""

    @main.command("push")
    @click.argument("target")
    @click.argument("keys", nargs=-1)
    @click.option("--repo", default=None, help="Repository owner/name (checked against git).")
    @global_flags
    def push(target: str, keys: tuple[str, ...], repo: Optional[str]):
        """Upload new and changed secrets to TARGET.

        Only keys whose value changed since the last push are sent.
        Push never deletes anything remotely.
        """
        project = Project.find()
        with project_lock(project.cred_dir):
            sync = _synchronizer(project, target)
            result = sync.push(list(keys) or None, dry_run=is_dry_run(), identity=repo)

            if isinstance(result, SyncPlan):
                if is_json():
                    print_json(_plan_data(result))
                else:
                    _render_plan(result)
                return

            _finish(project, result, "PUSH")

    @main.command("prune")
    @click.argument("target")
    @click.argument("keys", nargs=-1)
    @click.option("--repo", default=None, help="Repository owner/name (checked against git).")
    @click.option("--all", "select_all", is_flag=True,
                  help="Prune every key previously pushed to TARGET.")
    @global_flags
    def prune(target: str, keys: tuple[str, ...], repo: Optional[str], select_all: bool):
        """Delete secrets from TARGET. The local vault is left unchanged.

        Requires --yes unless --dry-run. Under CI without --yes the run
        is forced to a dry run.
        """
        ci_force_dry = "CI" in os.environ and not assume_yes()
        dry_run = is_dry_run() or ci_force_dry
        if ci_force_dry and not is_dry_run() and not is_json():
            err_console.print("[yellow]CI detected without --yes; forcing dry-run for prune.[/]")

        project = Project.find()
        with project_lock(project.cred_dir):
            sync = _synchronizer(project, target)
            result = sync.prune(
                list(keys) or None,
                select_all=select_all,
                dry_run=dry_run,
                identity=repo,
                confirmed=assume_yes(),
            )

            if isinstance(result, SyncPlan):
                if is_json():
                    print_json(_plan_data(result))
                else:
                    _render_plan(result)
                return

            _finish(project, result, "PRUNE")
            say("[dim]Local vault unchanged.[/]")
