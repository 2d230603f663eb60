"""Import/export commands: move secrets between ``.env`` files and the vault."""

from __future__ import annotations

from pathlib import Path

import click

from ._common import global_flags, is_dry_run, is_json, open_vault, print_json, say
from ..audit import audit_event
from ..envfile import export_env_file, import_entries, parse_env_file
from ..lock import project_lock
from ..project import Project


def register_envfile_commands(main: click.Group) -> None:
    """Register import and export."""

    @main.command("import")
    @click.argument("path", type=click.Path(dir_okay=False))
    @click.option("--overwrite", is_flag=True, help="Overwrite existing keys instead of skipping.")
    @global_flags
    def import_cmd(path: str, overwrite: bool):
        """Import KEY=VALUE lines from a .env file into the vault."""
        entries = parse_env_file(Path(path))
        dry_run = is_dry_run()

        project = Project.find()
        with project_lock(project.cred_dir):
            project, vault_key, vault = open_vault(project)
            stats = import_entries(entries, vault, overwrite=overwrite, dry_run=dry_run)
            if not dry_run:
                project.save_vault(vault, vault_key)
                audit_event(
                    project.cred_dir, "IMPORT", f"Imported {path}",
                    metadata={"added": stats.added, "overwritten": stats.overwritten,
                              "skipped": stats.skipped},
                )

        if is_json():
            print_json({
                "path": path,
                "added": stats.added,
                "overwritten": stats.overwritten,
                "skipped": stats.skipped,
                "dry_run": dry_run,
            })
        elif dry_run:
            say(f"(dry-run) Would import from {path} (add {stats.added}, "
                f"overwrite {stats.overwritten}, skip {stats.skipped}).")
        else:
            say(f"[green]✓[/] Imported {path} (added {stats.added}, "
                f"overwritten {stats.overwritten}, skipped {stats.skipped}).")

    @main.command("export")
    @click.argument("path", type=click.Path(dir_okay=False))
    @click.option("--force", is_flag=True, help="Overwrite the output file if it exists.")
    @global_flags
    def export_cmd(path: str, force: bool):
        """Export the vault to a .env file (written with mode 0600)."""
        _, _, vault = open_vault()
        dry_run = is_dry_run()
        count = export_env_file(vault, Path(path), force=force, dry_run=dry_run)

        if is_json():
            print_json({"path": path, "exported": count, "dry_run": dry_run})
        elif dry_run:
            say(f"(dry-run) Would export {count} keys to {path}.")
        else:
            say(f"[green]✓[/] Exported {count} keys to {path}.")
