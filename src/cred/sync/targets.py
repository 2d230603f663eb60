"""
Sync targets -- where secrets are delivered.

Each target implements TargetClient: upsert one key, delete one key.
Targets are write-only from our side; nothing is ever read back. The
engine picks a client by name from the registry, so adding a platform
means registering a class, not touching the engine.

GitHub: Actions repository secrets. Values are sealed to the
repository's public key (libsodium sealed box) before upload.
"""

from __future__ import annotations

import logging
import re
import threading
from abc import ABC, abstractmethod
from base64 import b64decode, b64encode
from typing import Any, Callable, Dict, Optional

import requests
from nacl.exceptions import CryptoError as NaclCryptoError
from nacl.public import PublicKey, SealedBox

from ..errors import TargetAPIError, ValidationError
from ..formats import SecretFormat

logger = logging.getLogger("cred.sync.targets")


class TargetClient(ABC):
    """Write-only capability for one external platform.

    Both operations raise TargetAPIError on any failure, timeouts
    included, so the engine can account for each key on its own.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry name (e.g. ``github``)."""

    @abstractmethod
    def upsert(self, identity: str, key: str, value: str, fmt: SecretFormat) -> None:
        """Create or overwrite ``key`` at ``identity``."""

    @abstractmethod
    def delete(self, identity: str, key: str) -> None:
        """Remove ``key`` at ``identity``. Already-absent counts as success."""

    def validate_identity(self, identity: str) -> None:
        """Reject an identity this platform cannot address.

        Called once per plan, before any remote call.

        Raises:
            ValidationError: ``identity`` is malformed for this target.
        """

    def revoke_auth_token(self) -> bool:
        """Invalidate the client's token remotely, if the platform allows.

        Returns:
            True if the token was revoked remotely.
        """
        return False


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_TARGETS: Dict[str, Callable[..., TargetClient]] = {}


def register_target(name: str):
    """Decorator to register a TargetClient factory under ``name``."""
    def wrapper(cls):
        _TARGETS[name] = cls
        return cls
    return wrapper


def available_targets() -> list[str]:
    return sorted(_TARGETS)


def create_target(name: str, token: str, **options: Any) -> TargetClient:
    """Instantiate the registered client for ``name``.

    Raises:
        ValidationError: If no target is registered under ``name``.
    """
    factory = _TARGETS.get(name)
    if factory is None:
        raise ValidationError(
            f"Target '{name}' not supported. Available: {', '.join(available_targets())}"
        )
    return factory(token, **options)


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------

_GITHUB_SECRET_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_REPO_SLUG = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")


def seal_for_github(public_key_b64: str, value: str) -> str:
    """Encrypt ``value`` to a repository public key; returns base64."""
    try:
        public_key = PublicKey(b64decode(public_key_b64))
    except (ValueError, NaclCryptoError) as exc:
        raise ValueError(f"Invalid GitHub public key: {exc}") from exc
    sealed = SealedBox(public_key).encrypt(value.encode("utf-8"))
    return b64encode(sealed).decode("ascii")


@register_target("github")
class GitHubTarget(TargetClient):
    """GitHub Actions repository secrets via the REST API.

    Args:
        token: Personal access token with ``actions:write``.
        timeout: Per-request timeout in seconds.
        session: Optional requests session (tests inject one).
        api_base: API root, for GitHub Enterprise.
    """

    API_BASE = "https://api.github.com"
    API_VERSION = "2022-11-28"

    def __init__(
        self,
        token: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        api_base: str = API_BASE,
    ) -> None:
        self._token = token
        self._timeout = timeout
        self._session = session or requests.Session()
        self._api_base = api_base.rstrip("/")
        self._public_keys: Dict[str, tuple[str, str]] = {}
        self._key_lock = threading.Lock()

    @property
    def name(self) -> str:
        return "github"

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "User-Agent": "cred-cli",
            "X-GitHub-Api-Version": self.API_VERSION,
        }

    def validate_identity(self, identity: str) -> None:
        if not _REPO_SLUG.match(identity):
            raise ValidationError(f"Invalid GitHub repository '{identity}'; expected owner/name")

    def _secrets_url(self, identity: str) -> str:
        return f"{self._api_base}/repos/{identity}/actions/secrets"

    def _request(self, method: str, url: str, key: Optional[str], **kwargs: Any) -> requests.Response:
        try:
            return self._session.request(
                method, url, headers=self._headers(), timeout=self._timeout, **kwargs
            )
        except requests.Timeout:
            raise TargetAPIError(key, f"GitHub {method} timed out after {self._timeout}s") from None
        except requests.RequestException as exc:
            raise TargetAPIError(key, f"GitHub {method} failed: {exc}") from exc

    def _public_key(self, identity: str, key: str) -> tuple[str, str]:
        """Fetch (key_id, key) once per repository."""
        with self._key_lock:
            cached = self._public_keys.get(identity)
            if cached is not None:
                return cached

            resp = self._request("GET", f"{self._secrets_url(identity)}/public-key", key)
            if resp.status_code != 200:
                raise TargetAPIError(
                    key, f"Failed to get GitHub public key: HTTP {resp.status_code}"
                )
            try:
                body = resp.json()
                cached = (str(body["key_id"]), str(body["key"]))
            except (ValueError, KeyError, TypeError) as exc:
                raise TargetAPIError(key, "malformed public-key response") from exc
            self._public_keys[identity] = cached
            return cached

    def upsert(self, identity: str, key: str, value: str, fmt: SecretFormat) -> None:
        if not _GITHUB_SECRET_NAME.match(key) or key.upper().startswith("GITHUB_"):
            raise TargetAPIError(key, "invalid GitHub secret name")

        key_id, public_key = self._public_key(identity, key)
        try:
            encrypted = seal_for_github(public_key, value)
        except ValueError as exc:
            raise TargetAPIError(key, str(exc)) from exc

        resp = self._request(
            "PUT",
            f"{self._secrets_url(identity)}/{key}",
            key,
            json={"encrypted_value": encrypted, "key_id": key_id},
        )
        if resp.status_code not in (201, 204):
            raise TargetAPIError(key, f"GitHub rejected upsert: HTTP {resp.status_code}")
        logger.info("Set %s on github:%s (%s)", key, identity, fmt.value)

    def delete(self, identity: str, key: str) -> None:
        resp = self._request("DELETE", f"{self._secrets_url(identity)}/{key}", key)
        if resp.status_code == 404:
            logger.info("Skipped %s on github:%s (not found)", key, identity)
            return
        if resp.status_code not in (200, 204):
            raise TargetAPIError(key, f"GitHub rejected delete: HTTP {resp.status_code}")
        logger.info("Deleted %s on github:%s", key, identity)

    def revoke_auth_token(self) -> bool:
        logger.info("GitHub PATs cannot be revoked via API; forgetting it locally")
        return False
