"""
Pydantic models for the things a project owns: its secrets and its
recorded identity.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from .crypto import digest
from .formats import SecretFormat


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SecretEntry(BaseModel):
    """One secret plus its metadata (schema v2).

    ``hash`` is None only for entries migrated from the legacy schema
    that have not been rewritten since.
    """

    value: str
    format: SecretFormat = SecretFormat.RAW
    hash: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    description: Optional[str] = None

    @model_validator(mode="after")
    def check_consistency(self) -> "SecretEntry":
        """Hash must match the value; updated_at never precedes created_at."""
        if self.hash is not None and self.hash != digest(self.value):
            raise ValueError("hash does not match value")
        try:
            backwards = self.updated_at < self.created_at
        except TypeError as exc:
            raise ValueError("timestamps mix naive and aware datetimes") from exc
        if backwards:
            raise ValueError("updated_at is earlier than created_at")
        return self

    def to_payload(self) -> dict:
        """Serialise for the vault payload, omitting absent optionals."""
        return self.model_dump(mode="json", exclude_none=True)


class ProjectConfig(BaseModel):
    """Project metadata stored in ``.cred/project.yaml``.

    ``git_root`` and ``git_repo`` form the recorded identity: captured
    at init and changed only by re-initialising.
    """

    name: str = "my-project"
    version: str = "0.1.0"
    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=utcnow)
    git_root: Optional[str] = None
    git_repo: Optional[str] = None
