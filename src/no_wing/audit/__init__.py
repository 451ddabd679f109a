from no_wing.audit.models import (
    AuditActor,
    AuditEvent,
    AuditOperation,
    AuditQuery,
    AuditResult,
    ComplianceReport,
    ComplianceViolation,
)
from no_wing.audit.pipeline import AuditPipeline
from no_wing.audit.sinks import CloudTrailVerifier, CloudWatchAuditSink, LocalAuditLog

__all__ = [
    "AuditActor",
    "AuditEvent",
    "AuditOperation",
    "AuditPipeline",
    "AuditQuery",
    "AuditResult",
    "CloudTrailVerifier",
    "CloudWatchAuditSink",
    "ComplianceReport",
    "ComplianceViolation",
    "LocalAuditLog",
]
