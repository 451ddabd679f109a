"""Audit record models. Events are immutable once built."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from no_wing.utils.time import ensure_aware

EventType = Literal[
    "credential-switch",
    "role-assumption",
    "permission-request",
    "aws-operation",
    "error",
]
ViolationType = Literal[
    "unauthorized-access", "permission-escalation", "data-access", "policy-violation"
]
Severity = Literal["low", "medium", "high", "critical"]

_FROZEN = {"frozen": True}


class AuditActor(BaseModel):
    model_config = _FROZEN

    type: str = "unknown"
    identity: str = "unknown"
    session_id: str | None = None


class AuditOperation(BaseModel):
    model_config = _FROZEN

    service: str
    action: str
    resources: list[str] = Field(default_factory=list)
    parameters: dict[str, Any] = Field(default_factory=dict)


class AuditResult(BaseModel):
    model_config = _FROZEN

    success: bool
    error_message: str | None = None
    response_data: Any = None


class AuditContext(BaseModel):
    model_config = _FROZEN

    correlation_id: str | None = None
    request_id: str | None = None


class ComplianceTags(BaseModel):
    model_config = _FROZEN

    data_classification: str = "internal"
    retention_days: int = 365
    encryption_required: bool = True


class AuditEvent(BaseModel):
    model_config = _FROZEN

    id: str
    timestamp: datetime
    event_type: EventType
    actor: AuditActor = Field(default_factory=AuditActor)
    operation: AuditOperation
    result: AuditResult
    context: AuditContext = Field(default_factory=AuditContext)
    compliance: ComplianceTags = Field(default_factory=ComplianceTags)

    @property
    def is_failure(self) -> bool:
        return self.event_type == "error" or not self.result.success

    def to_json_line(self) -> str:
        return self.model_dump_json() + "\n"


class AuditQuery(BaseModel):
    """Filter for ``AuditPipeline.query_events``. ``None`` means "any"."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    event_types: list[str] | None = None
    actor_types: list[str] | None = None
    services: list[str] | None = None
    success: bool | None = None
    limit: int | None = Field(default=None, ge=1)

    def matches(self, event: AuditEvent) -> bool:
        timestamp = ensure_aware(event.timestamp)
        if self.start_time and timestamp < ensure_aware(self.start_time):
            return False
        if self.end_time and timestamp > ensure_aware(self.end_time):
            return False
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        if self.actor_types is not None and event.actor.type not in self.actor_types:
            return False
        if self.services is not None and event.operation.service not in self.services:
            return False
        if self.success is not None and event.result.success != self.success:
            return False
        return True


class ComplianceViolation(BaseModel):
    id: str
    type: ViolationType
    severity: Severity
    description: str
    event: AuditEvent
    recommendation: str


class ComplianceSummary(BaseModel):
    total_events: int = 0
    operator_actions: int = 0
    agent_actions: int = 0
    errors: int = 0
    permission_requests: int = 0
    by_actor_type: dict[str, int] = Field(default_factory=dict)


class ComplianceReport(BaseModel):
    report_id: str
    generated_at: datetime
    period_start: datetime
    period_end: datetime
    summary: ComplianceSummary
    events: list[AuditEvent] = Field(default_factory=list)
    violations: list[ComplianceViolation] = Field(default_factory=list)
