"""Broker facade wiring the credential, role, elevation and audit components."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from no_wing.audit.models import AuditEvent, AuditQuery, ComplianceReport
from no_wing.audit.pipeline import AuditPipeline
from no_wing.audit.sinks import CloudTrailVerifier, CloudWatchAuditSink, LocalAuditLog
from no_wing.aws.client_factory import ServiceClientFactory, call_aws_api_async
from no_wing.config import Settings, load_settings
from no_wing.credentials.loader import ContextConfig, load_contexts
from no_wing.credentials.models import CredentialContext, ResolvedIdentity
from no_wing.credentials.store import CredentialStore
from no_wing.domain.operations import OperationContext
from no_wing.elevation.elevator import PermissionElevator
from no_wing.elevation.models import ElevationResult, PermissionRequest
from no_wing.elevation.patterns import load_pattern_table
from no_wing.elevation.requests import PermissionRequestStore
from no_wing.errors import CredentialInvalid, NoWingError, UnknownContext, client_error_code
from no_wing.roles.resolver import RoleResolver

logger = logging.getLogger(__name__)


@dataclass
class OperationOutcome:
    """Result of ``run_operation``. ``executed`` is False for degraded paths."""

    elevation: ElevationResult
    executed: bool
    response: dict[str, object] | None = None
    audit_event: AuditEvent | None = None


class NoWingBroker:
    def __init__(
        self,
        credentials: CredentialStore,
        clients: ServiceClientFactory,
        roles: RoleResolver,
        elevator: PermissionElevator,
        audit: AuditPipeline,
    ) -> None:
        self.credentials = credentials
        self.clients = clients
        self.roles = roles
        self.elevator = elevator
        self.audit = audit
        roles.set_assumption_callback(audit.log_role_assumption)
        elevator.set_request_callback(audit.log_permission_request)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        contexts: ContextConfig | None = None,
    ) -> "NoWingBroker":
        settings = settings or load_settings()
        credentials = CredentialStore(
            region=settings.aws.default_region,
            sts_region=settings.aws.sts_region,
            refresh_buffer_seconds=settings.roles.safety_margin_seconds,
            sdk_timeout_seconds=settings.aws.sdk_timeout_seconds,
        )
        if contexts is None:
            contexts = _load_context_config(settings.credentials.config_path)
        for context in contexts.build_contexts():
            credentials.register(context)

        clients = ServiceClientFactory(
            credentials,
            default_region=settings.aws.default_region,
            sdk_timeout_seconds=settings.aws.sdk_timeout_seconds,
            max_retries=settings.aws.max_retries,
        )
        roles = RoleResolver(
            clients,
            path_prefix=settings.roles.path_prefix,
            max_items=settings.roles.max_items,
            session_duration_seconds=settings.roles.session_duration_seconds,
            safety_margin_seconds=settings.roles.safety_margin_seconds,
            catalog_ttl_seconds=settings.roles.catalog_ttl_seconds,
        )
        elevator = PermissionElevator(
            credentials,
            roles,
            patterns=load_pattern_table(settings.elevation.patterns_path),
            requests=PermissionRequestStore(ttl_hours=settings.elevation.request_ttl_hours),
            allow_direct_permissions=settings.elevation.allow_direct_permissions,
            degradation_enabled=settings.elevation.degradation_enabled,
            disabled_strategies=settings.elevation.disabled_strategies,
        )
        cloudwatch = None
        if settings.audit.log_group:
            cloudwatch = CloudWatchAuditSink(
                clients, settings.audit.log_group, settings.audit.log_stream
            )
        audit = AuditPipeline(
            LocalAuditLog(settings.audit.log_path),
            credentials=credentials,
            cloudwatch=cloudwatch,
            cloudtrail=CloudTrailVerifier(clients, settings.audit.trail_lookback_hours),
            buffer_size=settings.audit.buffer_size,
            query_limit=settings.audit.query_limit,
        )

        default_context = settings.credentials.default_context or contexts.default_context
        if default_context:
            credentials.switch_context(default_context)
        return cls(credentials, clients, roles, elevator, audit)

    # -- credentials -----------------------------------------------------

    async def switch_context(self, name: str) -> CredentialContext:
        previous = self.credentials.active_name
        try:
            context = self.credentials.switch_context(name)
        except UnknownContext as exc:
            await self.audit.log_credential_switch(previous, name, False, str(exc))
            raise
        await self._resolve_active_identity()
        await self.audit.log_credential_switch(previous, name, True)
        return context

    async def _resolve_active_identity(self) -> None:
        """Resolve the active context's identity once so audit actors carry it.

        A context whose credentials cannot be validated stays active; its
        events are recorded with an unknown identity.
        """
        context = self.credentials.get_active_context()
        if context is None or context.identity is not None:
            return
        try:
            await self.credentials.validate(context.name)
        except CredentialInvalid as exc:
            logger.warning("Could not resolve identity of context %s: %s", context.name, exc)

    async def who_am_i(self, name: str | None = None) -> ResolvedIdentity:
        if name is None:
            name = self.credentials.require_active_context().name
        return await self.credentials.validate(name)

    async def test_credentials(self, name: str | None = None) -> bool:
        try:
            await self.who_am_i(name)
        except CredentialInvalid as exc:
            logger.warning("Credential test failed: %s", exc)
            return False
        return True

    # -- elevation and execution -----------------------------------------

    async def elevate(self, operation: OperationContext) -> ElevationResult:
        """Walk the elevation ladder and audit its outcome as one event."""
        await self._resolve_active_identity()
        result = await self.elevator.elevate(operation)
        await self.audit.log_elevation(operation, result)
        return result

    async def run_operation(
        self,
        operation: OperationContext,
        method_name: str,
        params: dict[str, Any] | None = None,
        region: str | None = None,
    ) -> OperationOutcome:
        """Elevate, then call ``method_name`` under the resulting identity.

        Exactly one ``aws-operation`` audit event is recorded per call.
        Raises ``PermissionRequestRequired`` when the ladder ends in a
        permission request, and re-raises AWS errors after auditing them.
        """
        params = params or {}
        await self._resolve_active_identity()
        elevation = await self.elevator.elevate(operation)
        session_id = elevation.session.session_name if elevation.session else None

        if not elevation.success or elevation.method == "degraded":
            event = await self.audit.log_aws_operation(
                operation.service,
                method_name,
                operation.resources,
                params,
                success=False,
                error=elevation.message,
            )
            elevation.raise_for_permission_request()
            return OperationOutcome(elevation=elevation, executed=False, audit_event=event)

        try:
            client = await asyncio.to_thread(
                self._client_for, operation.service, elevation, region
            )
            response = await call_aws_api_async(client, method_name, **params)
        except Exception as exc:
            await self.audit.log_aws_operation(
                operation.service,
                method_name,
                operation.resources,
                params,
                success=False,
                error=_error_message(exc),
                session_id=session_id,
            )
            raise

        event = await self.audit.log_aws_operation(
            operation.service,
            method_name,
            operation.resources,
            params,
            success=True,
            response_data=response,
            session_id=session_id,
        )
        return OperationOutcome(
            elevation=elevation, executed=True, response=response, audit_event=event
        )

    def _client_for(self, service: str, elevation: ElevationResult, region: str | None) -> Any:
        if elevation.session is not None:
            return self.clients.get_client_for_session(service, elevation.session, region)
        return self.clients.get_client(service, region=region)

    # -- permission requests ---------------------------------------------

    def list_approvable_requests(self) -> list[PermissionRequest]:
        self.elevator.cleanup_expired_requests()
        return self.elevator.list_approvable_requests()

    def approve_request(self, request_id: str, approver: str) -> bool:
        return self.elevator.approve_permission_request(request_id, approver)

    def deny_request(self, request_id: str, approver: str) -> bool:
        return self.elevator.deny_permission_request(request_id, approver)

    # -- compliance ------------------------------------------------------

    async def query_audit_events(self, query: AuditQuery | None = None) -> list[AuditEvent]:
        return await self.audit.query_events(query)

    async def generate_compliance_report(
        self, start_time: datetime, end_time: datetime
    ) -> ComplianceReport:
        return await self.audit.generate_compliance_report(start_time, end_time)

    async def verify_centralized_logging(self) -> dict[str, object]:
        return await self.audit.verify_centralized_logging()

    async def aclose(self) -> None:
        """Flush pending audit events. Call before the process exits."""
        await self.audit.aclose()
        self.roles.cleanup_expired_sessions()


def _error_message(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        code, message = client_error_code(exc)
        return f"{code}: {message}"
    if isinstance(exc, (BotoCoreError, NoWingError)):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"


def _load_context_config(path: str) -> ContextConfig:
    if not Path(path).exists():
        logger.info("No context configuration at %s; starting without contexts", path)
        return ContextConfig()
    return load_contexts(path)
