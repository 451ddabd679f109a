"""Compliance tagging and violation detection."""

from __future__ import annotations

import uuid
from collections import Counter
from collections.abc import Iterable

from no_wing.audit.models import (
    AuditEvent,
    ComplianceSummary,
    ComplianceTags,
    ComplianceViolation,
)

OPERATOR_ACTOR = "operator"
AGENT_ACTOR = "agent"

# service -> (classification, retention in days)
SERVICE_CLASSIFICATION: dict[str, tuple[str, int]] = {
    "iam": ("confidential", 2555),
    "sts": ("confidential", 2555),
    "s3": ("internal", 1095),
    "lambda": ("internal", 1095),
    "cloudformation": ("internal", 1095),
}
DEFAULT_CLASSIFICATION = ("internal", 365)

ACCESS_DENIED_MARKERS = ("AccessDenied", "UnauthorizedOperation", "not authorized")
PRIVILEGED_ROLE_MARKERS = ("admin", "administrator", "poweruser", "root")


def classify_service(service: str) -> ComplianceTags:
    classification, retention = SERVICE_CLASSIFICATION.get(
        service.lower(), DEFAULT_CLASSIFICATION
    )
    return ComplianceTags(
        data_classification=classification,
        retention_days=retention,
        encryption_required=True,
    )


def _new_violation_id() -> str:
    return f"violation-{uuid.uuid4().hex[:16]}"


def _is_access_denied(event: AuditEvent) -> bool:
    message = event.result.error_message or ""
    return any(marker in message for marker in ACCESS_DENIED_MARKERS)


def _privileged_role(event: AuditEvent) -> str | None:
    for resource in event.operation.resources:
        role_name = resource.rsplit("/", 1)[-1].lower()
        if any(marker in role_name for marker in PRIVILEGED_ROLE_MARKERS):
            return resource
    return None


def detect_violations(events: Iterable[AuditEvent]) -> list[ComplianceViolation]:
    violations: list[ComplianceViolation] = []
    for event in events:
        if not event.result.success and _is_access_denied(event):
            violations.append(
                ComplianceViolation(
                    id=_new_violation_id(),
                    type="unauthorized-access",
                    severity="medium",
                    description=f"Unauthorized access attempt: {event.operation.service}:{event.operation.action}",
                    event=event,
                    recommendation="Review IAM policies and ensure proper permissions are configured",
                )
            )
        if event.event_type == "role-assumption":
            role = _privileged_role(event)
            if role is not None:
                violations.append(
                    ComplianceViolation(
                        id=_new_violation_id(),
                        type="permission-escalation",
                        severity="high",
                        description=f"Privileged role assumption detected: {role}",
                        event=event,
                        recommendation="Use least-privilege roles instead of admin roles",
                    )
                )
    return violations


def summarize(events: Iterable[AuditEvent]) -> ComplianceSummary:
    events = list(events)
    by_actor = Counter(event.actor.type for event in events)
    return ComplianceSummary(
        total_events=len(events),
        operator_actions=by_actor.get(OPERATOR_ACTOR, 0),
        agent_actions=by_actor.get(AGENT_ACTOR, 0),
        errors=sum(1 for event in events if not event.result.success),
        permission_requests=sum(1 for e in events if e.event_type == "permission-request"),
        by_actor_type=dict(by_actor),
    )
