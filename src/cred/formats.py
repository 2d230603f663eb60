"""
Secret format classification.

Structural detection only: we look at the shape of a value, never at
what it means. When in doubt the answer is Raw or Multiline.

Priority (first match wins):
    1. pem        -- starts with ``-----BEGIN ``
    2. json       -- parses as a JSON object or array
    3. base64     -- single line, strict base64
    4. multiline  -- contains a literal newline
    5. raw        -- everything else
"""

from __future__ import annotations

import base64
import binascii
import json
import re
from enum import Enum

from .errors import ValidationError

PEM_MARKER = "-----BEGIN "
BASE64_MIN_LENGTH = 8

_BASE64_ALPHABET = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")


class SecretFormat(str, Enum):
    """Format hint stored alongside every secret."""

    RAW = "raw"
    MULTILINE = "multiline"
    PEM = "pem"
    BASE64 = "base64"
    JSON = "json"

    def __str__(self) -> str:
        return self.value


def parse_format(text: str) -> SecretFormat:
    """Parse a user-supplied format name (case-insensitive)."""
    try:
        return SecretFormat(text.strip().lower())
    except ValueError:
        valid = ", ".join(f.value for f in SecretFormat)
        raise ValidationError(
            f"Invalid format '{text}'. Valid options: {valid}"
        ) from None


def _is_json_container(trimmed: str) -> bool:
    if not (
        (trimmed.startswith("{") and trimmed.endswith("}"))
        or (trimmed.startswith("[") and trimmed.endswith("]"))
    ):
        return False
    try:
        parsed = json.loads(trimmed)
    except ValueError:
        return False
    return isinstance(parsed, (dict, list))


def is_strict_base64(text: str) -> bool:
    """True only for padded, decodable, single-line base64."""
    if len(text) < BASE64_MIN_LENGTH or len(text) % 4 != 0:
        return False
    if not _BASE64_ALPHABET.match(text):
        return False
    try:
        base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return False
    return True


def classify(value: str) -> SecretFormat:
    """Guess the format of a secret value."""
    trimmed = value.strip()

    if trimmed.startswith(PEM_MARKER):
        return SecretFormat.PEM

    if _is_json_container(trimmed):
        return SecretFormat.JSON

    if "\n" not in trimmed and is_strict_base64(trimmed):
        return SecretFormat.BASE64

    if "\n" in value:
        return SecretFormat.MULTILINE

    return SecretFormat.RAW
