"""Role catalog and session models."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType

from no_wing.credentials.models import TemporaryCredentials
from no_wing.utils.time import ensure_aware, utc_now


@dataclass(frozen=True)
class RoleDescriptor:
    role_name: str
    role_arn: str
    max_session_duration: int = 3600
    assume_role_policy_document: str = ""
    description: str | None = None
    tags: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), hash=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @classmethod
    def from_iam(cls, role: Mapping[str, object]) -> "RoleDescriptor":
        """Build from an IAM ``ListRoles``/``GetRole`` role entry."""
        raw_tags = role.get("Tags") or []
        tags = {
            str(tag["Key"]): str(tag["Value"])
            for tag in raw_tags  # type: ignore[union-attr]
            if tag.get("Key") and tag.get("Value") is not None
        }
        policy = role.get("AssumeRolePolicyDocument") or ""
        if not isinstance(policy, str):
            # boto3 decodes the URL-encoded policy into a dict.
            policy = json.dumps(policy, sort_keys=True)
        return cls(
            role_name=str(role["RoleName"]),
            role_arn=str(role["Arn"]),
            max_session_duration=int(role.get("MaxSessionDuration") or 3600),  # type: ignore[arg-type]
            assume_role_policy_document=policy,
            description=role.get("Description"),  # type: ignore[arg-type]
            tags=tags,
        )


@dataclass(frozen=True)
class RoleSession:
    """Temporary credentials from one successful role assumption.

    Never renewed in place: once ``is_valid`` turns false a new session is
    created.
    """

    role_arn: str
    session_name: str
    credentials: TemporaryCredentials
    assumed_at: datetime = field(default_factory=utc_now)

    @property
    def expiration(self) -> datetime:
        return ensure_aware(self.credentials.expiration)

    def is_valid(self, safety_margin_seconds: int = 300) -> bool:
        return utc_now() + timedelta(seconds=safety_margin_seconds) < self.expiration

    def session_info(self) -> dict[str, object]:
        return {
            "role_arn": self.role_arn,
            "session_name": self.session_name,
            "expires_at": self.expiration.isoformat(),
            "assumed_at": ensure_aware(self.assumed_at).isoformat(),
        }
