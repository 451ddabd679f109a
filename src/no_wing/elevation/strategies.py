"""Graceful degradation strategies.

A strategy is an async callable taking ``(operation, pattern, env)``. It
succeeds by returning a ``StrategyOutcome`` and fails by raising.
"""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from no_wing.domain.operations import OperationContext
from no_wing.elevation.models import PermissionPattern, PermissionRequest
from no_wing.errors import DegradedStrategyFailed, NoWingError

if TYPE_CHECKING:
    from no_wing.credentials.store import CredentialStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StrategyOutcome:
    message: str
    alternatives: tuple[str, ...] = ()
    request_id: str | None = None
    details: dict[str, object] = field(default_factory=dict)


@dataclass
class StrategyEnvironment:
    """What a strategy may touch: credentials and the request queue."""

    credentials: "CredentialStore"
    open_request: Callable[[OperationContext, PermissionPattern], Awaitable[PermissionRequest]]


Strategy = Callable[[OperationContext, PermissionPattern, StrategyEnvironment], Awaitable[StrategyOutcome]]


async def _validate_active_identity(name: str, env: StrategyEnvironment) -> str:
    context = env.credentials.get_active_context()
    if context is None:
        raise DegradedStrategyFailed(name, "no credential context is active")
    try:
        identity = await env.credentials.validate(context.name)
    except NoWingError as exc:
        raise DegradedStrategyFailed(name, str(exc)) from exc
    return identity.principal_arn


async def read_only_validation(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    principal = await _validate_active_identity("read-only-validation", env)
    return StrategyOutcome(
        message="Operation validated in read-only mode. Manual execution required for changes.",
        alternatives=("manual-execution", "permission-request"),
        details={"principal": principal},
    )


async def dry_run(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    plan = {
        "operation": operation.operation_type,
        "actions": list(pattern.required_actions),
        "resources": list(operation.resources) or list(pattern.resource_patterns),
    }
    return StrategyOutcome(
        message="Dry-run completed successfully. Review the plan and execute manually.",
        alternatives=("manual-execution", "permission-request"),
        details={"plan": plan},
    )


async def manual_approval(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    request = await env.open_request(operation, pattern)
    return StrategyOutcome(
        message="Manual approval requested. Operation will proceed once approved.",
        alternatives=("wait-for-approval", "manual-execution"),
        request_id=request.id,
    )


async def staged_deployment(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    return StrategyOutcome(
        message="Staged deployment initiated. Review each stage before proceeding.",
        alternatives=("continue-stages", "abort-deployment"),
        details={"stages": ["validate", "deploy-to-staging", "promote"]},
    )


def _outside_patterns(resources: Iterable[str], patterns: list[str]) -> list[str]:
    lowered = [p.lower() for p in patterns]
    return [
        r for r in resources if not any(fnmatch.fnmatchcase(r.lower(), p) for p in lowered)
    ]


async def function_validation(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    rejected = _outside_patterns(operation.resources, pattern.resource_patterns)
    if rejected:
        raise DegradedStrategyFailed(
            "function-validation",
            f"resources outside allowed patterns: {', '.join(rejected)}",
        )
    return StrategyOutcome(
        message="Function configuration validated against allowed resources. Deploy manually or request permissions.",
        alternatives=("manual-execution", "permission-request"),
    )


async def code_analysis(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    return StrategyOutcome(
        message="Deployment package handed to local code analysis. No AWS changes were made.",
        alternatives=("manual-execution", "permission-request"),
    )


async def read_only_access(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    principal = await _validate_active_identity("read-only-access", env)
    return StrategyOutcome(
        message="Read-only access confirmed. Write operations need manual execution.",
        alternatives=("manual-execution", "permission-request"),
        details={"principal": principal},
    )


async def presigned_urls(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    return StrategyOutcome(
        message="Ask an operator for presigned URLs to transfer the objects.",
        alternatives=("request-presigned-url", "permission-request"),
        details={"objects": list(operation.resources)},
    )


async def manual_upload(
    operation: OperationContext, pattern: PermissionPattern, env: StrategyEnvironment
) -> StrategyOutcome:
    return StrategyOutcome(
        message="Upload must be performed manually by the operator.",
        alternatives=("manual-upload", "permission-request"),
        details={"objects": list(operation.resources)},
    )


BUILTIN_STRATEGIES: dict[str, Strategy] = {
    "read-only-validation": read_only_validation,
    "dry-run": dry_run,
    "manual-approval": manual_approval,
    "staged-deployment": staged_deployment,
    "function-validation": function_validation,
    "code-analysis": code_analysis,
    "read-only-access": read_only_access,
    "presigned-urls": presigned_urls,
    "manual-upload": manual_upload,
}


class StrategyRegistry:
    def __init__(self, strategies: dict[str, Strategy] | None = None) -> None:
        self._strategies: dict[str, Strategy] = dict(
            BUILTIN_STRATEGIES if strategies is None else strategies
        )

    def register(self, name: str, strategy: Strategy) -> None:
        self._strategies[name] = strategy

    def names(self) -> list[str]:
        return sorted(self._strategies)

    async def run(
        self,
        name: str,
        operation: OperationContext,
        pattern: PermissionPattern,
        env: StrategyEnvironment,
    ) -> StrategyOutcome:
        strategy = self._strategies.get(name)
        if strategy is None:
            raise DegradedStrategyFailed(name, "unknown fallback strategy")
        logger.info("Trying fallback strategy %s for %s", name, operation.operation_type)
        return await strategy(operation, pattern, env)
