"""Import and export ``.env``-style files to and from the vault.

Parsing follows python-dotenv, so quoted and multi-line values exported
here (PEM blocks included) import again unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from dotenv.parser import parse_stream

from .errors import ValidationError, VaultIOError
from .fileio import atomic_write_text
from .vault import Vault

# Escapes python-dotenv decodes inside double quotes.
_ESCAPES = {"\\": "\\\\", '"': '\\"', "\n": "\\n", "\r": "\\r"}
# A quoted value may not end in a backslash: python-dotenv would read the
# closing quote as escaped. Such values are written bare when they can be.
_BARE_SAFE = re.compile(r"^[^\s'\"#][^\r\n]*$")


@dataclass
class ImportStats:
    added: int = 0
    skipped: int = 0
    overwritten: int = 0


def quote_env_value(value: str) -> str:
    """Double-quote ``value`` so python-dotenv reads it back verbatim.

    Raises:
        ValidationError: ``value`` ends in a backslash and cannot be
            written in a form that reads back unchanged.
    """
    if value.endswith("\\"):
        if _BARE_SAFE.match(value) and not re.search(r"\s#", value):
            return value
        raise ValidationError("value ending in a backslash cannot be exported")
    return '"' + "".join(_ESCAPES.get(ch, ch) for ch in value) + '"'


def parse_env_file(path: Path) -> list[tuple[str, str]]:
    """Parse ``KEY=VALUE`` bindings in file order.

    Blank lines and ``#`` comments are skipped. Quoting, escapes and an
    optional ``export`` prefix are handled by python-dotenv.

    Raises:
        ValidationError: On a row without ``=``, with an empty key, or
            that python-dotenv cannot parse. The message names the line.
    """
    try:
        with open(path, encoding="utf-8") as stream:
            bindings = list(parse_stream(stream))
    except (OSError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Failed to read {path}: {exc}") from exc

    entries: list[tuple[str, str]] = []
    for binding in bindings:
        text = binding.original.string
        # The binding's mark sits before any blank lines it swallowed.
        stripped = text.lstrip()
        lineno = binding.original.line + text[: len(text) - len(stripped)].count("\n")

        if binding.error:
            if stripped.startswith("="):
                raise ValidationError(f"Invalid line {lineno}: key cannot be empty")
            raise ValidationError(f"Invalid line {lineno}: expected KEY=VALUE")
        if binding.key is None:
            continue
        if binding.value is None:
            raise ValidationError(f"Invalid line {lineno}: expected KEY=VALUE")
        entries.append((binding.key, binding.value))
    return entries


def import_entries(
    entries: list[tuple[str, str]],
    vault: Vault,
    overwrite: bool = False,
    dry_run: bool = False,
) -> ImportStats:
    """Merge parsed entries into the vault.

    Existing keys are kept unless ``overwrite``. With ``dry_run`` the
    vault is untouched but the counts are what a real run would do.
    """
    stats = ImportStats()
    for key, value in entries:
        if key in vault:
            if not overwrite:
                stats.skipped += 1
                continue
            stats.overwritten += 1
        else:
            stats.added += 1
        if not dry_run:
            vault.set(key, value)
    return stats


def export_env_file(
    vault: Vault,
    output_path: Path,
    force: bool = False,
    dry_run: bool = False,
) -> int:
    """Write the vault as ``KEY="VALUE"`` lines, sorted by key.

    Values are double-quoted with newlines escaped, so each entry takes
    exactly one line. A single-line value ending in a backslash is
    written bare. Nothing is written if any value cannot be exported.

    Returns:
        Number of entries written (or that would be written).

    Raises:
        ValidationError: ``output_path`` exists and ``force`` is False,
            or a value cannot be written so that it reads back unchanged.
        VaultIOError: The file could not be written.
    """
    if output_path.exists() and not force:
        raise ValidationError(f"{output_path} exists; rerun with --force to overwrite")

    env = vault.as_env()
    lines = []
    for key, value in env.items():
        try:
            lines.append(f"{key}={quote_env_value(value)}\n")
        except ValidationError as exc:
            raise ValidationError(f"Cannot export {key}: {exc}") from exc
    body = "".join(lines)
    if dry_run:
        return len(env)

    try:
        atomic_write_text(output_path, body, mode=0o600)
    except OSError as exc:
        raise VaultIOError(f"Failed to write {output_path}: {exc}") from exc
    return len(env)
