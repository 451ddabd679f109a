"""Audit pipeline: buffering, durable persistence, queries and reports."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any

from no_wing.audit.compliance import classify_service, detect_violations, summarize
from no_wing.audit.models import (
    AuditActor,
    AuditContext,
    AuditEvent,
    AuditOperation,
    AuditQuery,
    AuditResult,
    ComplianceReport,
    ComplianceTags,
    EventType,
)
from no_wing.audit.sinks import CloudTrailVerifier, CloudWatchAuditSink, LocalAuditLog
from no_wing.utils.masking import copy_payload, redact_sensitive_fields, sanitize_parameters
from no_wing.utils.time import utc_now

if TYPE_CHECKING:
    from no_wing.credentials.store import CredentialStore
    from no_wing.domain.operations import OperationContext
    from no_wing.elevation.models import ElevationResult, PermissionRequest

logger = logging.getLogger(__name__)


@dataclass
class _Buffered:
    event: AuditEvent
    persisted: bool = False


class AuditPipeline:
    """Records every broker action.

    Events are buffered and flushed in call order. Error events and failed
    results are written to the local log immediately; the later flush only
    mirrors them. ``AuditWriteFailed`` propagates when the local log cannot
    be written. CloudWatch problems are logged and ignored.
    """

    def __init__(
        self,
        local_log: LocalAuditLog,
        *,
        credentials: "CredentialStore | None" = None,
        cloudwatch: CloudWatchAuditSink | None = None,
        cloudtrail: CloudTrailVerifier | None = None,
        buffer_size: int = 100,
        query_limit: int = 1000,
    ) -> None:
        self._local = local_log
        self._credentials = credentials
        self._cloudwatch = cloudwatch
        self._cloudtrail = cloudtrail
        self._buffer_size = buffer_size
        self._query_limit = query_limit
        self._buffer: list[_Buffered] = []
        self._write_lock = asyncio.Lock()
        self.correlation_id = f"corr-{uuid.uuid4().hex[:16]}"

    @property
    def pending(self) -> int:
        return len(self._buffer)

    # -- core ------------------------------------------------------------

    def _current_actor(self, session_id: str | None = None) -> AuditActor:
        context = self._credentials.get_active_context() if self._credentials else None
        if context is None:
            return AuditActor(session_id=session_id)
        identity = context.identity.principal_arn if context.identity else "unknown"
        return AuditActor(type=context.name, identity=identity, session_id=session_id)

    async def log_event(
        self,
        event_type: EventType,
        operation: AuditOperation,
        result: AuditResult,
        *,
        actor: AuditActor | None = None,
        compliance: ComplianceTags | None = None,
        request_id: str | None = None,
    ) -> AuditEvent:
        operation = operation.model_copy(
            update={"parameters": sanitize_parameters(operation.parameters)}
        )
        result = result.model_copy(
            update={"response_data": redact_sensitive_fields(result.response_data)}
        )
        event = AuditEvent(
            id=f"audit-{uuid.uuid4().hex}",
            timestamp=utc_now(),
            event_type=event_type,
            actor=actor or self._current_actor(),
            operation=operation,
            result=result,
            context=AuditContext(correlation_id=self.correlation_id, request_id=request_id),
            compliance=compliance or classify_service(operation.service),
        )
        entry = _Buffered(event)
        self._buffer.append(entry)

        if event.is_failure:
            async with self._write_lock:
                await asyncio.to_thread(self._local.append, [event])
            entry.persisted = True

        logger.debug("Audit event logged: %s %s", event.event_type, event.operation.action)
        if len(self._buffer) >= self._buffer_size:
            await self.flush()
        return event

    async def flush(self) -> int:
        """Drain the buffer to the local log (and CloudWatch, if configured)."""
        if not self._buffer:
            return 0
        batch, self._buffer = self._buffer, []
        unwritten = [entry.event for entry in batch if not entry.persisted]
        try:
            async with self._write_lock:
                await asyncio.to_thread(self._local.append, unwritten)
        except Exception:
            # Keep the drained events so a later flush can retry them.
            self._buffer[:0] = batch
            raise
        for entry in batch:
            entry.persisted = True

        if self._cloudwatch is not None:
            await asyncio.to_thread(self._cloudwatch.put_events, [e.event for e in batch])
        logger.debug("Flushed %d audit events", len(batch))
        return len(batch)

    # -- specialized loggers ---------------------------------------------

    async def log_credential_switch(
        self,
        from_context: str | None,
        to_context: str,
        success: bool,
        error: str | None = None,
    ) -> AuditEvent:
        return await self.log_event(
            "credential-switch",
            AuditOperation(
                service="sts",
                action="switch-context",
                parameters={"from_context": from_context, "to_context": to_context},
            ),
            AuditResult(success=success, error_message=error),
        )

    async def log_role_assumption(
        self,
        role_arn: str,
        session_name: str,
        success: bool,
        error: str | None = None,
    ) -> AuditEvent:
        return await self.log_event(
            "role-assumption",
            AuditOperation(
                service="sts",
                action="assume-role",
                resources=[role_arn],
                parameters={"role_arn": role_arn, "session_name": session_name},
            ),
            AuditResult(success=success, error_message=error),
            actor=self._current_actor(session_id=session_name),
        )

    async def log_aws_operation(
        self,
        service: str,
        action: str,
        resources: Sequence[str] = (),
        parameters: dict[str, Any] | None = None,
        *,
        success: bool,
        error: str | None = None,
        response_data: object = None,
        session_id: str | None = None,
    ) -> AuditEvent:
        return await self.log_event(
            "aws-operation",
            AuditOperation(
                service=service,
                action=action,
                resources=list(resources),
                parameters=sanitize_parameters(parameters),
            ),
            AuditResult(
                success=success,
                error_message=error,
                response_data=redact_sensitive_fields(copy_payload(response_data)),
            ),
            actor=self._current_actor(session_id=session_id),
        )

    async def log_permission_request(self, request: "PermissionRequest") -> AuditEvent:
        return await self.log_event(
            "permission-request",
            AuditOperation(
                service="iam",
                action="request-permissions",
                resources=list(request.resources),
                parameters={
                    "operation": request.operation,
                    "actions": list(request.actions),
                    "justification": request.justification,
                    "request_id": request.id,
                    "status": request.status,
                },
            ),
            AuditResult(success=True),
            request_id=request.id,
        )

    async def log_elevation(
        self, operation: "OperationContext", result: "ElevationResult"
    ) -> AuditEvent:
        session_id = result.session.session_name if result.session else None
        return await self.log_event(
            "aws-operation",
            AuditOperation(
                service=operation.service,
                action=f"elevate:{operation.operation_type}",
                resources=list(operation.resources),
                parameters={
                    "method": result.method,
                    "message": result.message,
                    "alternatives": list(result.alternatives),
                },
            ),
            AuditResult(
                success=result.success,
                error_message=None if result.success else result.message,
            ),
            actor=self._current_actor(session_id=session_id),
            request_id=result.request_id,
        )

    async def log_error(
        self,
        service: str,
        action: str,
        message: str,
        resources: Sequence[str] = (),
        parameters: dict[str, Any] | None = None,
    ) -> AuditEvent:
        return await self.log_event(
            "error",
            AuditOperation(
                service=service,
                action=action,
                resources=list(resources),
                parameters=sanitize_parameters(parameters),
            ),
            AuditResult(success=False, error_message=message),
        )

    # -- queries ---------------------------------------------------------

    async def query_events(self, query: AuditQuery | None = None) -> list[AuditEvent]:
        query = query or AuditQuery()
        await self.flush()
        local = await asyncio.to_thread(lambda: list(self._local.read_events()))

        events = local
        if self._cloudwatch is not None:
            remote = await asyncio.to_thread(
                self._cloudwatch.fetch_events,
                query.start_time,
                query.end_time,
                query.limit or self._query_limit,
            )
            events = _merge_by_id(local, remote)

        limit = query.limit or self._query_limit
        return [event for event in events if query.matches(event)][:limit]

    async def generate_compliance_report(
        self, start_time: datetime, end_time: datetime
    ) -> ComplianceReport:
        events = await self.query_events(AuditQuery(start_time=start_time, end_time=end_time))
        report = ComplianceReport(
            report_id=f"report-{uuid.uuid4().hex[:16]}",
            generated_at=utc_now(),
            period_start=start_time,
            period_end=end_time,
            summary=summarize(events),
            events=events,
            violations=detect_violations(events),
        )
        logger.info(
            "Compliance report %s: %d events, %d violations",
            report.report_id,
            report.summary.total_events,
            len(report.violations),
        )
        return report

    async def verify_centralized_logging(self) -> dict[str, object]:
        if self._cloudtrail is None:
            return {
                "is_configured": False,
                "recent_event_count": 0,
                "last_event_time": None,
                "errors": ["CloudTrail verification is not available"],
            }
        return await asyncio.to_thread(self._cloudtrail.verify)

    async def aclose(self) -> None:
        await self.flush()


def _merge_by_id(local: list[AuditEvent], remote: list[AuditEvent]) -> list[AuditEvent]:
    """Local order, centralized copy wins on id conflicts."""
    merged: dict[str, AuditEvent] = {event.id: event for event in local}
    for event in remote:
        merged[event.id] = event
    return list(merged.values())
