"""Secret commands: set, get, list, describe, remove (local vault only)."""

from __future__ import annotations

from typing import Optional

import click
from rich.table import Table

from ._common import (
    console,
    format_age,
    global_flags,
    is_dry_run,
    is_json,
    is_non_interactive,
    open_vault,
    print_json,
    require_yes,
    say,
)
from ..audit import audit_event
from ..errors import UnknownKey, ValidationError
from ..formats import parse_format
from ..lock import project_lock
from ..project import Project
from ..vault import Vault


def _read_value(key: str) -> str:
    if is_non_interactive():
        raise ValidationError("--non-interactive set; value must be given on the command line")
    value = click.prompt(f"Value for {key}", hide_input=True)
    if not value:
        raise ValidationError("Value cannot be empty")
    return value


def register_secret_commands(main: click.Group) -> None:
    """Register the secret command group."""

    @main.group()
    def secret():
        """Manage secrets in the local vault.

        Nothing here talks to a target. Use push and prune for that.
        """

    @secret.command("set")
    @click.argument("key")
    @click.argument("value", required=False)
    @click.option("--format", "fmt", default=None,
                  help="Force a format: raw, multiline, pem, base64, json.")
    @click.option("--description", "-d", default=None, help="Attach a description.")
    @global_flags
    def secret_set(key: str, value: Optional[str], fmt: Optional[str], description: Optional[str]):
        """Set KEY to VALUE (prompts when VALUE is omitted)."""
        explicit = parse_format(fmt) if fmt else None
        if value is None:
            value = _read_value(key)

        project = Project.find()
        with project_lock(project.cred_dir):
            project, vault_key, vault = open_vault(project)
            existed = key in vault
            if is_dry_run():
                say(f"(dry-run) Would {'update' if existed else 'set'} [cyan]{key}[/]")
                if is_json():
                    print_json({"key": key, "created": not existed, "dry_run": True})
                return

            entry = vault.set_with_metadata(key, value, explicit_format=explicit,
                                            description=description)
            project.save_vault(vault, vault_key)
            audit_event(project.cred_dir, "SECRET_SET", f"Set {key}",
                        metadata={"key": key, "format": entry.format.value})

        if is_json():
            print_json({"key": key, "format": entry.format.value, "created": not existed})
        else:
            console.print(f"[green]✓[/] Set [cyan]{key}[/] = ***** [dim]({entry.format})[/]")

    @secret.command("get")
    @click.argument("key")
    @global_flags
    def secret_get(key: str):
        """Print the value of KEY."""
        _, _, vault = open_vault()
        value = vault.get(key)
        if value is None:
            raise UnknownKey(key)
        if is_json():
            print_json({"key": key, "value": value})
        else:
            click.echo(value)

    @secret.command("list")
    @global_flags
    def secret_list():
        """List keys with format and age. Values stay masked."""
        _, _, vault = open_vault()
        entries = vault.list_entries()

        if is_json():
            print_json({
                "keys": [key for key, _ in entries],
                "entries": [
                    {
                        "key": key,
                        "format": entry.format.value,
                        "description": entry.description,
                        "created_at": entry.created_at.isoformat(),
                        "updated_at": entry.updated_at.isoformat(),
                    }
                    for key, entry in entries
                ],
            })
            return

        if not entries:
            console.print("[dim]Vault is empty.[/] Add one with [cyan]cred secret set KEY VALUE[/].")
            return

        table = Table(title=f"Vault ({len(entries)} secrets)")
        table.add_column("Key", style="cyan")
        table.add_column("Value")
        table.add_column("Format")
        table.add_column("Updated", style="dim")
        table.add_column("Description")
        for key, entry in entries:
            table.add_row(
                key, "*****", entry.format.value,
                format_age(Vault.entry_age(entry)), entry.description or "",
            )
        console.print(table)

    @secret.command("describe")
    @click.argument("key")
    @click.argument("text", required=False)
    @global_flags
    def secret_describe(key: str, text: Optional[str]):
        """Set the description of KEY (clears it when TEXT is omitted)."""
        project = Project.find()
        with project_lock(project.cred_dir):
            project, vault_key, vault = open_vault(project)
            if key not in vault:
                raise UnknownKey(key)
            if is_dry_run():
                say(f"(dry-run) Would describe [cyan]{key}[/]")
                if is_json():
                    print_json({"key": key, "description": text, "dry_run": True})
                return
            vault.describe(key, text)
            project.save_vault(vault, vault_key)

        if is_json():
            print_json({"key": key, "description": text})
        elif text:
            console.print(f"[green]✓[/] Described [cyan]{key}[/]")
        else:
            console.print(f"[green]✓[/] Cleared description of [cyan]{key}[/]")

    @secret.command("remove")
    @click.argument("key")
    @global_flags
    def secret_remove(key: str):
        """Remove KEY from the local vault only (use prune for targets)."""
        if is_dry_run():
            say(f"(dry-run) Would remove [cyan]{key}[/]")
            if is_json():
                print_json({"key": key, "removed": False, "dry_run": True})
            return
        require_yes("secret remove")

        project = Project.find()
        with project_lock(project.cred_dir):
            project, vault_key, vault = open_vault(project)
            removed = vault.remove_entry(key) is not None
            if removed:
                project.save_vault(vault, vault_key)
                audit_event(project.cred_dir, "SECRET_REMOVE", f"Removed {key}",
                            metadata={"key": key})

        if is_json():
            print_json({"key": key, "removed": removed})
        elif removed:
            console.print(f"[green]✓[/] Removed [cyan]{key}[/] from local vault.")
        else:
            console.print(f"Secret [cyan]{key}[/] did not exist locally.")
