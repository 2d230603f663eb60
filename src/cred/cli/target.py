"""Target commands: set, list, revoke authentication for push targets."""

from __future__ import annotations

from typing import Optional

import click

from ._common import (
    console,
    get_config_dir,
    get_store,
    global_flags,
    is_dry_run,
    is_json,
    is_non_interactive,
    print_json,
    require_yes,
    say,
)
from ..config import get_target_token, load_config, remove_target_token, set_target_token
from ..errors import ValidationError
from ..sync.targets import available_targets, create_target


def _check_target(name: str) -> None:
    if name not in available_targets():
        raise ValidationError(
            f"Target '{name}' not supported. Available: {', '.join(available_targets())}"
        )


def _read_token(token: Optional[str]) -> str:
    if token:
        return token
    if is_non_interactive():
        raise ValidationError("--non-interactive set; token must be provided via --token")
    token = click.prompt("Enter target token", hide_input=True, default="", show_default=False)
    if not token.strip():
        raise ValidationError("Token cannot be empty")
    return token


def register_target_commands(main: click.Group) -> None:
    """Register the target command group."""

    @main.group()
    def target():
        """Manage target authentication (tokens live in the credential store)."""

    @target.command("set")
    @click.argument("name")
    @click.option("--token", default=None, envvar="CRED_TARGET_TOKEN",
                  help="Auth token (prompts if omitted).")
    @global_flags
    def target_set(name: str, token: Optional[str]):
        """Store the auth token for target NAME."""
        _check_target(name)
        if is_dry_run():
            say(f"(dry-run) Would configure target [cyan]{name}[/]")
            if is_json():
                print_json({"target": name, "dry_run": True})
            return

        auth_ref = set_target_token(name, _read_token(token), get_store(), get_config_dir())
        if is_json():
            print_json({"target": name, "auth_ref": auth_ref})
        else:
            console.print(f"[green]✓[/] Target [cyan]{name}[/] configured.")

    @target.command("list")
    @global_flags
    def target_list():
        """List configured targets."""
        config = load_config(get_config_dir())
        names = sorted(config.targets)
        if is_json():
            print_json({"targets": names})
            return
        if not names:
            console.print("[dim]No targets configured.[/] Run [cyan]cred target set github[/].")
            return
        console.print("Configured targets:")
        for name in names:
            marker = " [dim](default)[/]" if name == config.preferences.default_target else ""
            console.print(f"  - [cyan]{name}[/]{marker}")

    @target.command("revoke")
    @click.argument("name")
    @global_flags
    def target_revoke(name: str):
        """Forget the token for NAME (revoking it remotely where possible)."""
        _check_target(name)
        if is_dry_run():
            say(f"(dry-run) Would revoke target [cyan]{name}[/]")
            if is_json():
                print_json({"target": name, "dry_run": True})
            return
        require_yes("target revoke")

        store = get_store()
        config_dir = get_config_dir()
        token = get_target_token(name, store, config_dir)
        if token is None:
            if is_json():
                print_json({"target": name, "removed": False, "revoked_remote": False})
            else:
                console.print(f"Target [cyan]{name}[/] was not configured.")
            return

        revoked_remote = create_target(name, token).revoke_auth_token()
        remove_target_token(name, store, config_dir)

        if is_json():
            print_json({"target": name, "removed": True, "revoked_remote": revoked_remote})
            return
        if not revoked_remote:
            console.print(
                f"  [yellow]{name} tokens cannot be revoked remotely;[/] "
                "revoke it in the provider's settings too."
            )
        console.print(f"[green]✓[/] Token for [cyan]{name}[/] removed.")
