"""Permission elevation data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from no_wing.errors import PermissionRequestRequired
from no_wing.roles.models import RoleSession
from no_wing.utils.time import ensure_aware, utc_now

ElevationMethod = Literal["direct", "role-assumption", "degraded", "permission-request"]
RequestStatus = Literal["pending", "approved", "denied", "expired"]

_TERMINAL_STATUSES = frozenset({"approved", "denied", "expired"})


def _ensure_list(v: Any) -> list:
    if v is None:
        return []
    return v


class PermissionPattern(BaseModel):
    """Permission needs and fallback plan for one operation type."""

    model_config = {"frozen": True}

    operation: str
    required_actions: list[str] = Field(default_factory=lambda: ["*"])
    optional_actions: list[str] = Field(default_factory=list)
    resource_patterns: list[str] = Field(default_factory=lambda: ["*"])
    fallback_strategies: list[str] = Field(default_factory=list)
    sensitive: bool = Field(
        default=True,
        description="Sensitive operations never run on ambient credentials.",
    )

    @field_validator(
        "required_actions",
        "optional_actions",
        "resource_patterns",
        "fallback_strategies",
        mode="before",
    )
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)


@dataclass
class PermissionRequest:
    """A human-approvable record created when automation cannot proceed.

    Status only moves forward: ``pending`` to ``approved``, ``denied`` or
    ``expired``. Resolved requests are retained.
    """

    id: str
    operation: str
    service: str
    action: str
    actions: list[str]
    resources: list[str]
    justification: str
    expires_at: datetime
    optional_actions: list[str] = field(default_factory=list)
    requester: str | None = None
    status: RequestStatus = "pending"
    requested_at: datetime = field(default_factory=utc_now)
    resolved_by: str | None = None
    resolved_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == "pending"

    def is_past_expiry(self, now: datetime | None = None) -> bool:
        return ensure_aware(self.expires_at) <= (now or utc_now())

    def _transition(self, status: RequestStatus, actor: str | None) -> bool:
        if self.status in _TERMINAL_STATUSES or status == "pending":
            return False
        self.status = status
        self.resolved_by = actor
        self.resolved_at = utc_now()
        return True

    def approve(self, approver: str) -> bool:
        return self._transition("approved", approver)

    def deny(self, approver: str) -> bool:
        return self._transition("denied", approver)

    def expire(self) -> bool:
        return self._transition("expired", None)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "operation": self.operation,
            "service": self.service,
            "action": self.action,
            "actions": list(self.actions),
            "optional_actions": list(self.optional_actions),
            "resources": list(self.resources),
            "justification": self.justification,
            "status": self.status,
            "requester": self.requester,
            "requested_at": self.requested_at.isoformat(),
            "expires_at": ensure_aware(self.expires_at).isoformat(),
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
        }


@dataclass
class ElevationResult:
    success: bool
    method: ElevationMethod
    message: str
    session_info: dict[str, object] | None = None
    alternatives: list[str] = field(default_factory=list)
    request_id: str | None = None
    session: RoleSession | None = field(default=None, repr=False, compare=False)

    @property
    def requires_permission_request(self) -> bool:
        return not self.success and self.method == "permission-request" and bool(self.request_id)

    def raise_for_permission_request(self) -> None:
        """Raise ``PermissionRequestRequired`` when human review is the outcome."""
        if self.requires_permission_request:
            raise PermissionRequestRequired(self.request_id or "", self.message)

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "method": self.method,
            "message": self.message,
            "session_info": self.session_info,
            "alternatives": list(self.alternatives),
            "request_id": self.request_id,
        }
