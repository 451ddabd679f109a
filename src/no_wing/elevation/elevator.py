"""Permission elevation ladder.

``elevate`` walks direct check, role assumption, graceful degradation and
finally a permission request, stopping at the first step that succeeds.
It never raises: unexpected failures become a failed ``permission-request``
result pointing the caller at manual paths.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from no_wing.credentials.store import CredentialStore
from no_wing.domain.operations import OperationContext
from no_wing.elevation.models import ElevationResult, PermissionPattern, PermissionRequest
from no_wing.elevation.patterns import PatternTable
from no_wing.elevation.requests import PermissionRequestStore
from no_wing.elevation.strategies import StrategyEnvironment, StrategyRegistry
from no_wing.roles.resolver import RoleResolver

logger = logging.getLogger(__name__)

RequestCallback = Callable[[PermissionRequest], Awaitable[None]]

REQUEST_ALTERNATIVES = ["wait-for-approval", "manual-execution", "contact-administrator"]
FAILURE_ALTERNATIVES = ["manual-execution", "contact-administrator"]


class PermissionElevator:
    def __init__(
        self,
        credentials: CredentialStore,
        roles: RoleResolver,
        *,
        patterns: PatternTable | None = None,
        strategies: StrategyRegistry | None = None,
        requests: PermissionRequestStore | None = None,
        allow_direct_permissions: bool = False,
        degradation_enabled: bool = True,
        disabled_strategies: Iterable[str] = (),
        on_permission_request: RequestCallback | None = None,
    ) -> None:
        self._credentials = credentials
        self._roles = roles
        self._patterns = patterns or PatternTable()
        self._strategies = strategies or StrategyRegistry()
        self._requests = requests or PermissionRequestStore()
        self._allow_direct = allow_direct_permissions
        self._degradation_enabled = degradation_enabled
        self._disabled_strategies = frozenset(disabled_strategies)
        self._on_permission_request = on_permission_request
        self._learned: dict[tuple[str, str], list[str]] = {}

    @property
    def patterns(self) -> PatternTable:
        return self._patterns

    def set_request_callback(self, callback: RequestCallback | None) -> None:
        self._on_permission_request = callback

    async def elevate(self, operation: OperationContext) -> ElevationResult:
        logger.info("Elevating permissions for %s", operation.operation_type)
        try:
            for step in (
                self._check_direct_permissions,
                self._try_role_assumption,
                self._try_graceful_degradation,
            ):
                result = await step(operation)
                if result.success:
                    self.learn_from_success(operation, result.method)
                    return result
                logger.debug("%s step declined: %s", result.method, result.message)
            return await self.create_permission_request(operation)
        except Exception as exc:
            logger.exception("Permission elevation failed for %s", operation.operation_type)
            return ElevationResult(
                success=False,
                method="permission-request",
                message=f"Permission elevation failed: {exc}",
                alternatives=list(FAILURE_ALTERNATIVES),
            )

    # -- ladder steps ----------------------------------------------------

    async def _check_direct_permissions(self, operation: OperationContext) -> ElevationResult:
        context = self._credentials.get_active_context()
        if context is None:
            return ElevationResult(
                success=False,
                method="direct",
                message="No credential context is active",
                alternatives=["role-assumption", "permission-request"],
            )
        pattern = self._patterns.lookup(operation)
        if self._allow_direct and not pattern.sensitive:
            return ElevationResult(
                success=True,
                method="direct",
                message=f"Using {context.name} credentials directly",
            )
        return ElevationResult(
            success=False,
            method="direct",
            message="Direct permissions not recommended for security reasons",
            alternatives=["role-assumption", "permission-request"],
        )

    async def _try_role_assumption(self, operation: OperationContext) -> ElevationResult:
        session = await self._roles.assume_role_for_operation(operation)
        if session is None:
            return ElevationResult(
                success=False,
                method="role-assumption",
                message="No suitable role found for operation",
                alternatives=["permission-request", "manual-execution"],
            )
        return ElevationResult(
            success=True,
            method="role-assumption",
            message=f"Successfully assumed role: {session.role_arn}",
            session_info=session.session_info(),
            session=session,
        )

    async def _try_graceful_degradation(self, operation: OperationContext) -> ElevationResult:
        if not self._degradation_enabled:
            return ElevationResult(
                success=False,
                method="degraded",
                message="Graceful degradation is disabled by configuration",
            )
        pattern = self._patterns.lookup(operation)
        candidates = [s for s in pattern.fallback_strategies if s not in self._disabled_strategies]
        if not candidates:
            return ElevationResult(
                success=False,
                method="degraded",
                message="No fallback strategies available for this operation",
            )

        env = StrategyEnvironment(credentials=self._credentials, open_request=self._open_request)
        for name in candidates:
            try:
                outcome = await self._strategies.run(name, operation, pattern, env)
            except Exception as exc:
                logger.warning("Fallback strategy %s failed: %s", name, exc)
                continue
            return ElevationResult(
                success=True,
                method="degraded",
                message=outcome.message,
                alternatives=list(outcome.alternatives),
                request_id=outcome.request_id,
            )
        return ElevationResult(
            success=False,
            method="degraded",
            message="All fallback strategies failed",
            alternatives=candidates,
        )

    async def create_permission_request(self, operation: OperationContext) -> ElevationResult:
        request = await self._open_request(operation, self._patterns.lookup(operation))
        return ElevationResult(
            success=False,
            method="permission-request",
            message=f"Permission request created: {request.id}",
            request_id=request.id,
            alternatives=list(REQUEST_ALTERNATIVES),
        )

    async def _open_request(
        self, operation: OperationContext, pattern: PermissionPattern
    ) -> PermissionRequest:
        request = self._requests.create(operation, pattern, requester=self._requester())
        if self._on_permission_request is not None:
            await self._on_permission_request(request)
        return request

    def _requester(self) -> str | None:
        context = self._credentials.get_active_context()
        if context is None:
            return None
        if context.identity is not None:
            return context.identity.principal_arn
        return context.name

    # -- learning --------------------------------------------------------

    def learn_from_success(self, operation: OperationContext, method: str) -> None:
        methods = self._learned.setdefault((operation.operation_type, operation.service), [])
        if method not in methods:
            methods.append(method)
            logger.info(
                "Learned successful method for %s/%s: %s",
                operation.operation_type,
                operation.service,
                method,
            )

    def get_learned_patterns(self, operation: OperationContext) -> list[str]:
        return list(self._learned.get((operation.operation_type, operation.service), []))

    # -- permission requests ---------------------------------------------

    def get_permission_request(self, request_id: str) -> PermissionRequest | None:
        return self._requests.get(request_id)

    def approve_permission_request(self, request_id: str, approver: str) -> bool:
        return self._requests.approve(request_id, approver)

    def deny_permission_request(self, request_id: str, approver: str) -> bool:
        return self._requests.deny(request_id, approver)

    def cleanup_expired_requests(self) -> int:
        return self._requests.cleanup_expired()

    def list_approvable_requests(self) -> list[PermissionRequest]:
        return self._requests.list_approvable()

    def get_request_statistics(self) -> dict[str, int]:
        return self._requests.statistics()
