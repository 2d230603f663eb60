"""
AEAD helpers shared by the vault and the file credential store.

ChaCha20-Poly1305 with a 32-byte key supplied by the caller. Keys are
never derived from passwords here. Every seal draws a fresh 12-byte
nonce; the 16-byte Poly1305 tag is appended to the ciphertext.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from .errors import CryptoError

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def generate_key() -> bytes:
    """Return 32 bytes of fresh key material."""
    return secrets.token_bytes(KEY_SIZE)


def _cipher(key: bytes) -> ChaCha20Poly1305:
    if len(key) != KEY_SIZE:
        raise CryptoError(f"Encryption key must be {KEY_SIZE} bytes, got {len(key)}")
    return ChaCha20Poly1305(key)


def seal(plaintext: bytes, key: bytes, aad: Optional[bytes] = None) -> tuple[bytes, bytes]:
    """Encrypt plaintext under key.

    Args:
        plaintext: Bytes to protect.
        key: 32-byte key.
        aad: Associated data authenticated alongside the ciphertext.

    Returns:
        (nonce, ciphertext-with-tag).
    """
    nonce = secrets.token_bytes(NONCE_SIZE)
    return nonce, _cipher(key).encrypt(nonce, plaintext, aad)


def open_sealed(
    nonce: bytes, ciphertext: bytes, key: bytes, aad: Optional[bytes] = None
) -> bytes:
    """Decrypt and authenticate. Raises CryptoError on any failure.

    ``aad`` must match what was passed to :func:`seal`.
    """
    if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        raise CryptoError()
    try:
        return _cipher(key).decrypt(nonce, ciphertext, aad)
    except InvalidTag as exc:
        raise CryptoError() from exc


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(text: str) -> bytes:
    """Strict base64 decode; malformed input is treated as tampering."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError() from exc


def digest(value: str) -> str:
    """Content hash used for change tracking (SHA-256 hex of UTF-8)."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()
