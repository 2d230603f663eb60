"""Status command: project, vault, git binding, and target readiness."""

from __future__ import annotations

from pathlib import Path

import click
from rich.panel import Panel

from ._common import console, get_config_dir, get_store, global_flags, is_json, print_json
from ..config import load_config
from ..project import ProjectStatus, detect_git, project_status


def _yes_no(flag: bool) -> str:
    return "[green]yes[/]" if flag else "[red]no[/]"


def _render(status: ProjectStatus) -> None:
    if not status.is_project:
        console.print("[bold red]Not a cred project.[/] Run [cyan]cred init[/] first.")
        return

    vault_line = _yes_no(status.vault_accessible)
    if status.vault_migrated:
        vault_line += " [yellow](legacy schema; upgraded on next write)[/]"

    console.print()
    console.print(
        Panel(
            f"Project: [cyan]{status.project_name}[/]\n"
            f"Vault: {vault_line}\n"
            f"Secrets: [bold]{status.secret_count}[/]\n"
            f"Git: {status.git_root or '[dim]not detected[/]'}\n"
            f"Bound repo: {status.git_remote_bound or '[yellow]none[/]'}\n"
            f"Current repo: {status.git_remote_current or '[dim]none[/]'}\n"
            f"Targets: {', '.join(status.targets_configured) or '[yellow]none[/]'}\n"
            f"Ready to push: {_yes_no(status.ready_for_push)}",
            title="cred status",
            border_style="cyan",
        )
    )
    if (
        status.git_remote_bound
        and status.git_remote_current
        and status.git_remote_bound != status.git_remote_current
    ):
        console.print(
            "  [bold yellow]Warning:[/] current repo differs from the bound repo; "
            "push and prune will refuse."
        )
    console.print()


def register_status_commands(main: click.Group) -> None:
    """Register the status command."""

    @main.command("status")
    @global_flags
    def status():
        """Show project status (git, vault, targets)."""
        config = load_config(get_config_dir())
        result = project_status(
            Path.cwd(),
            get_store(),
            targets_configured=list(config.targets),
            git_info=detect_git(Path.cwd()),
        )
        if is_json():
            print_json(result.model_dump(mode="json"))
        else:
            _render(result)
