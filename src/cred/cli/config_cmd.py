"""Config commands: inspect and modify the global (non-secret) config."""

from __future__ import annotations

import click
import yaml

from ._common import (
    get_config_dir,
    global_flags,
    is_dry_run,
    is_json,
    print_json,
    require_yes,
    say,
)
from ..config import config_get, config_list, config_set, config_unset


def register_config_commands(main: click.Group) -> None:
    """Register the config command group."""

    @main.group()
    def config():
        """Inspect and modify cred global configuration."""

    @config.command("get")
    @click.argument("key")
    @global_flags
    def config_get_cmd(key: str):
        """Print a value by dotted path (e.g. preferences.max_workers)."""
        value = config_get(key, get_config_dir())
        if is_json():
            print_json({"key": key, "value": value})
        elif value is None:
            click.echo("(not set)")
        elif isinstance(value, (dict, list)):
            click.echo(yaml.safe_dump(value, default_flow_style=False, sort_keys=False).rstrip())
        else:
            click.echo(value)

    @config.command("set")
    @click.argument("key")
    @click.argument("value")
    @global_flags
    def config_set_cmd(key: str, value: str):
        """Set a value by dotted path."""
        if is_dry_run():
            say(f"(dry-run) Would set {key}")
            if is_json():
                print_json({"key": key, "dry_run": True})
            return
        stored = config_set(key, value, get_config_dir())
        if is_json():
            print_json({"key": key, "value": stored})
        else:
            say(f"Set {key}.")

    @config.command("unset")
    @click.argument("key")
    @global_flags
    def config_unset_cmd(key: str):
        """Remove a value by dotted path."""
        if is_dry_run():
            say(f"(dry-run) Would unset {key}")
            if is_json():
                print_json({"key": key, "dry_run": True})
            return
        require_yes("config unset")
        removed = config_unset(key, get_config_dir())
        if is_json():
            print_json({"key": key, "removed": removed})
        elif removed:
            say(f"Unset {key}.")
        else:
            say(f"{key} was not set.")

    @config.command("list")
    @global_flags
    def config_list_cmd():
        """Print the whole config."""
        text = config_list(get_config_dir())
        if is_json():
            print_json({"config": yaml.safe_load(text) or {}})
        else:
            click.echo(text.rstrip())
