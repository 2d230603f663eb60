"""
Global configuration -- ``~/.config/cred/config.yaml``.

Holds user preferences and the list of configured targets. Target
tokens themselves are never written here: each target records an
``auth_ref`` and the token bytes live in the credential store.

Override the directory with ``CRED_CONFIG_DIR``.
"""

from __future__ import annotations

import logging
import os
import secrets
import socket
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from . import __version__
from .errors import CredentialNotFound, ValidationError
from .fileio import atomic_write_text
from .keystore import CredentialStore

logger = logging.getLogger("cred.config")

CONFIG_FILE_NAME = "config.yaml"


class CredMeta(BaseModel):
    """Versioning information for the config file."""

    version: str = __version__
    config_version: int = 1


class Machine(BaseModel):
    """Machine identity hints."""

    id: Optional[str] = None
    hostname: Optional[str] = None


class Preferences(BaseModel):
    """User-facing preferences."""

    default_target: Optional[str] = "github"
    confirm_destructive: bool = True
    color_output: bool = True
    max_workers: int = Field(default=4, ge=1, le=32)
    http_timeout: float = Field(default=30.0, gt=0)


class TargetConfig(BaseModel):
    """A configured target: where its token lives, nothing more."""

    auth_ref: Optional[str] = None
    default: bool = False


class GlobalConfig(BaseModel):
    """Root of ``config.yaml``."""

    meta: CredMeta = Field(default_factory=CredMeta)
    machine: Machine = Field(default_factory=Machine)
    preferences: Preferences = Field(default_factory=Preferences)
    targets: dict[str, TargetConfig] = Field(default_factory=dict)


def resolve_config_dir() -> Path:
    override = os.environ.get("CRED_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or "~/.config"
    return Path(base).expanduser() / "cred"


def default_config() -> GlobalConfig:
    """Fresh config with a random machine id."""
    return GlobalConfig(
        machine=Machine(id=f"m_{secrets.token_hex(8)}", hostname=socket.gethostname()),
    )


def ensure_config(config_dir: Optional[Path] = None) -> Path:
    """Create the config file with defaults on first run. Returns its path."""
    config_dir = config_dir or resolve_config_dir()
    path = config_dir / CONFIG_FILE_NAME
    if not path.exists():
        _write_raw(path, default_config().model_dump(mode="json"))
        logger.info("Created default config at %s", path)
    return path


def _read_raw(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        logger.warning("Failed to parse %s: %s", path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def _write_raw(path: Path, data: dict[str, Any]) -> None:
    atomic_write_text(path, yaml.safe_dump(data, default_flow_style=False, sort_keys=False))


def load_config(config_dir: Optional[Path] = None) -> GlobalConfig:
    """Load the typed config, falling back to defaults if it is invalid."""
    path = ensure_config(config_dir)
    try:
        return GlobalConfig(**_read_raw(path))
    except PydanticValidationError as exc:
        logger.warning("Invalid config in %s, using defaults: %s", path, exc)
        return default_config()


def save_config(config: GlobalConfig, config_dir: Optional[Path] = None) -> None:
    path = ensure_config(config_dir)
    _write_raw(path, config.model_dump(mode="json"))


# ---------------------------------------------------------------------------
# Dotted-path access (``cred config get preferences.max_workers``)
# ---------------------------------------------------------------------------


def parse_value(text: str) -> Any:
    """Coerce CLI input into bool, int, float, or str."""
    lowered = text.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    try:
        return int(text)
    except ValueError:
        pass
    try:
        return float(text)
    except ValueError:
        return text


def _split(key_path: str) -> list[str]:
    return [part for part in key_path.split(".") if part]


def get_path(root: dict[str, Any], parts: list[str]) -> Any:
    current: Any = root
    for part in parts:
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


def set_path(root: dict[str, Any], parts: list[str], value: Any) -> None:
    """Set a nested value, replacing non-mapping intermediates."""
    current = root
    for part in parts[:-1]:
        nxt = current.get(part)
        if not isinstance(nxt, dict):
            nxt = {}
            current[part] = nxt
        current = nxt
    current[parts[-1]] = value


def unset_path(root: dict[str, Any], parts: list[str]) -> bool:
    parent = get_path(root, parts[:-1]) if len(parts) > 1 else root
    if isinstance(parent, dict) and parts[-1] in parent:
        del parent[parts[-1]]
        return True
    return False


def config_get(key_path: str, config_dir: Optional[Path] = None) -> Any:
    parts = _split(key_path)
    if not parts:
        return None
    return get_path(_read_raw(ensure_config(config_dir)), parts)


def config_set(key_path: str, value: str, config_dir: Optional[Path] = None) -> Any:
    """Set a value; the result must still validate as a GlobalConfig."""
    parts = _split(key_path)
    if not parts:
        raise ValidationError("Invalid key path")
    path = ensure_config(config_dir)
    data = _read_raw(path)
    coerced = parse_value(value)
    set_path(data, parts, coerced)
    try:
        GlobalConfig(**data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid value for {key_path}: {exc}") from exc
    _write_raw(path, data)
    return coerced


def config_unset(key_path: str, config_dir: Optional[Path] = None) -> bool:
    parts = _split(key_path)
    if not parts:
        return False
    path = ensure_config(config_dir)
    data = _read_raw(path)
    removed = unset_path(data, parts)
    if removed:
        _write_raw(path, data)
    return removed


def config_list(config_dir: Optional[Path] = None) -> str:
    data = _read_raw(ensure_config(config_dir))
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


# ---------------------------------------------------------------------------
# Target tokens
# ---------------------------------------------------------------------------


def target_auth_ref(target: str) -> str:
    return f"cred:target:{target}:default"


def set_target_token(
    target: str,
    token: str,
    store: CredentialStore,
    config_dir: Optional[Path] = None,
) -> str:
    """Store a target token and record its reference. Returns the ref."""
    auth_ref = target_auth_ref(target)
    store.put(auth_ref, token.encode("utf-8"))

    config = load_config(config_dir)
    config.targets.setdefault(target, TargetConfig()).auth_ref = auth_ref
    save_config(config, config_dir)
    logger.info("Configured target %s", target)
    return auth_ref


def get_target_token(
    target: str,
    store: CredentialStore,
    config_dir: Optional[Path] = None,
) -> Optional[str]:
    """Return the stored token for ``target``, or None if not configured."""
    target_config = load_config(config_dir).targets.get(target)
    if target_config is None or not target_config.auth_ref:
        return None
    try:
        return store.get(target_config.auth_ref).decode("utf-8")
    except CredentialNotFound:
        return None


def remove_target_token(
    target: str,
    store: CredentialStore,
    config_dir: Optional[Path] = None,
) -> bool:
    """Forget a target and delete its token. Returns False if unknown."""
    config = load_config(config_dir)
    target_config = config.targets.pop(target, None)
    if target_config is None:
        return False
    if target_config.auth_ref:
        store.delete(target_config.auth_ref)
    save_config(config, config_dir)
    logger.info("Removed target %s", target)
    return True
