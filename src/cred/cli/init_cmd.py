"""Init command: create a project in the current directory."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import click

from ._common import get_config_dir, get_store, global_flags, is_dry_run, print_json, say, is_json
from ..audit import audit_event
from ..config import ensure_config
from ..project import detect_git, init_project


def register_init_commands(main: click.Group) -> None:
    """Register the init command."""

    @main.command("init")
    @click.option("--name", "-n", default=None, help="Project name (default: directory name).")
    @global_flags
    def init(name: Optional[str]):
        """Initialize a new cred project in the current directory.

        Generates a vault key (kept in the credential store, never on
        disk here), an empty vault, and records the git identity if the
        directory sits in a GitHub-backed repository.
        """
        root = Path.cwd()
        git_info = detect_git(root)

        if is_dry_run():
            say(f"(dry-run) Would initialize cred in [cyan]{root}[/]")
            if is_json():
                print_json({"root": str(root), "dry_run": True})
            return

        ensure_config(get_config_dir())
        project = init_project(root, get_store(), name=name, git_info=git_info)
        config = project.load_config()
        audit_event(
            project.cred_dir, "INIT", f"Project {config.name} initialized",
            metadata={"git_repo": config.git_repo},
        )

        if is_json():
            print_json({
                "root": str(root),
                "name": config.name,
                "id": str(config.id),
                "git_repo": config.git_repo,
            })
            return

        console_lines = [f"[green]✓[/] Initialized cred project [cyan]{config.name}[/]"]
        if config.git_repo:
            console_lines.append(f"  Bound to [cyan]{config.git_repo}[/]")
        else:
            console_lines.append(
                "  [yellow]No GitHub remote detected;[/] pass --repo owner/name when pushing."
            )
        console_lines.append("  [dim].cred/ added to .gitignore[/]")
        say("\n".join(console_lines))
