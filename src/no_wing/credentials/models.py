"""Credential context data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from no_wing.utils.time import ensure_aware, utc_now

SourceKind = Literal["static", "profile", "assumed-session"]


@dataclass(frozen=True)
class TemporaryCredentials:
    """Immutable temporary AWS credentials from STS."""

    access_key_id: str
    secret_access_key: str
    session_token: str
    expiration: datetime

    def __repr__(self) -> str:
        return (
            f"TemporaryCredentials(access_key_id={self.access_key_id[:8]}***, "
            f"expiration={self.expiration.isoformat()})"
        )

    def is_expiring_soon(self, buffer_seconds: int) -> bool:
        return ensure_aware(self.expiration) <= utc_now() + timedelta(seconds=buffer_seconds)


class CredentialSource(BaseModel):
    """Where a context's credentials come from.

    Exactly one of: a static key pair, a named profile (``profile`` may be
    omitted to use the default credential chain), or a role to assume from a
    source profile.
    """

    model_config = {"frozen": True}

    access_key_id: str | None = Field(default=None, repr=False)
    secret_access_key: str | None = Field(default=None, repr=False)
    session_token: str | None = Field(default=None, repr=False)
    profile: str | None = None
    role_arn: str | None = None
    source_profile: str | None = None
    region: str | None = None

    @model_validator(mode="after")
    def _check_single_kind(self) -> "CredentialSource":
        has_keys = bool(self.access_key_id or self.secret_access_key)
        if has_keys and not (self.access_key_id and self.secret_access_key):
            raise ValueError("static credentials need both access_key_id and secret_access_key")
        kinds = [has_keys, self.profile is not None, self.role_arn is not None]
        if sum(kinds) > 1:
            raise ValueError("a credential source must use exactly one of keys, profile, role_arn")
        if self.source_profile is not None and self.role_arn is None:
            raise ValueError("source_profile is only valid together with role_arn")
        if self.role_arn is not None and not self.role_arn.startswith("arn:"):
            raise ValueError(f"role_arn is not an ARN: {self.role_arn!r}")
        return self

    @property
    def kind(self) -> SourceKind:
        if self.access_key_id:
            return "static"
        if self.role_arn:
            return "assumed-session"
        return "profile"

    def describe(self) -> str:
        """Human-readable descriptor that never includes secrets."""
        if self.kind == "static":
            return f"static key {self.access_key_id[:8]}***"  # type: ignore[index]
        if self.kind == "assumed-session":
            via = self.source_profile or "default chain"
            return f"role {self.role_arn} via {via}"
        return f"profile {self.profile or 'default chain'}"


@dataclass(frozen=True)
class ResolvedIdentity:
    account_id: str
    principal_arn: str
    user_id: str = ""


@dataclass
class CredentialContext:
    """A named, switchable credential bundle (e.g. ``operator`` or ``agent``)."""

    name: str
    source: CredentialSource
    identity: ResolvedIdentity | None = None
    validated_at: datetime | None = None
    description: str | None = field(default=None, compare=False)

    @property
    def is_validated(self) -> bool:
        return self.identity is not None

    def __repr__(self) -> str:
        return (
            f"CredentialContext(name={self.name!r}, source={self.source.describe()!r}, "
            f"identity={self.identity!r})"
        )
