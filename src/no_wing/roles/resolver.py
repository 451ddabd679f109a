"""Role discovery, matching and assumption.

Failures never escape this component: callers get ``None`` (or ``False``)
and pick the next escalation step themselves. Every fresh assumption
attempt is reported through the optional ``on_assumption`` callback so the
audit pipeline sees it.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
import time
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from botocore.exceptions import BotoCoreError, ClientError

from no_wing.credentials.models import TemporaryCredentials
from no_wing.domain.operations import OperationContext
from no_wing.errors import (
    CLIENT_ERROR_CODES,
    NoWingError,
    RoleAssumptionFailed,
    RoleNotFound,
    client_error_code,
)
from no_wing.roles.cache import SessionCache
from no_wing.roles.models import RoleDescriptor, RoleSession
from no_wing.roles.patterns import ROLE_PATTERNS, patterns_for, role_specificity
from no_wing.utils.time import epoch_millis

if TYPE_CHECKING:
    from no_wing.aws.client_factory import ServiceClientFactory

logger = logging.getLogger(__name__)

AssumptionCallback = Callable[[str, str, bool, "str | None"], Awaitable[None]]

DEFAULT_SESSION_DURATION_SECONDS = 3600


class RoleResolver:
    def __init__(
        self,
        clients: "ServiceClientFactory",
        *,
        path_prefix: str = "/",
        max_items: int = 100,
        session_duration_seconds: int = DEFAULT_SESSION_DURATION_SECONDS,
        safety_margin_seconds: int = 300,
        catalog_ttl_seconds: int = 300,
        role_patterns: Mapping[str, Sequence[str]] = ROLE_PATTERNS,
        on_assumption: AssumptionCallback | None = None,
    ) -> None:
        self._clients = clients
        self._path_prefix = path_prefix
        self._max_items = max_items
        self._session_duration_seconds = session_duration_seconds
        self._catalog_ttl_seconds = catalog_ttl_seconds
        self._role_patterns = role_patterns
        self._on_assumption = on_assumption
        self._sessions = SessionCache(safety_margin_seconds=safety_margin_seconds)
        self._catalog: dict[str, RoleDescriptor] = {}
        self._catalog_loaded_at: float | None = None

    def set_assumption_callback(self, callback: AssumptionCallback | None) -> None:
        self._on_assumption = callback

    # -- catalog ---------------------------------------------------------

    def invalidate_catalog(self) -> None:
        self._catalog.clear()
        self._catalog_loaded_at = None

    def _catalog_fresh(self) -> bool:
        if not self._catalog or self._catalog_loaded_at is None:
            return False
        if self._catalog_ttl_seconds <= 0:
            return True
        return time.monotonic() - self._catalog_loaded_at < self._catalog_ttl_seconds

    async def list_available_roles(self) -> list[RoleDescriptor]:
        """Roles visible to the active identity; ``[]`` if listing fails."""
        if self._catalog_fresh():
            return list(self._catalog.values())
        try:
            roles = await asyncio.to_thread(self._list_roles_sync)
        except (ClientError, BotoCoreError, NoWingError) as exc:
            logger.error("Failed to list available roles: %s", exc)
            return []
        self._catalog = {role.role_name: role for role in roles}
        self._catalog_loaded_at = time.monotonic()
        logger.info("Found %d available roles", len(roles))
        return roles

    def _list_roles_sync(self) -> list[RoleDescriptor]:
        iam = self._clients.get_client("iam")
        roles: list[RoleDescriptor] = []
        marker: str | None = None
        while True:
            params: dict[str, Any] = {"PathPrefix": self._path_prefix, "MaxItems": self._max_items}
            if marker:
                params["Marker"] = marker
            response = iam.list_roles(**params)
            for entry in response.get("Roles", []):
                if entry.get("RoleName") and entry.get("Arn"):
                    roles.append(RoleDescriptor.from_iam(entry))
            if not response.get("IsTruncated"):
                return roles
            marker = response.get("Marker")
            if not marker:
                return roles

    async def get_role_info(self, role_arn: str) -> RoleDescriptor | None:
        role_name = role_arn.rsplit("/", 1)[-1]
        if not role_name or role_name == role_arn:
            logger.error("Invalid role ARN: %s", role_arn)
            return None
        cached = self._catalog.get(role_name)
        if cached is not None:
            return cached
        try:
            response = await asyncio.to_thread(
                lambda: self._clients.get_client("iam").get_role(RoleName=role_name)
            )
        except (ClientError, BotoCoreError, NoWingError) as exc:
            logger.error("Failed to get role info for %s: %s", role_arn, exc)
            return None
        role = RoleDescriptor.from_iam(response["Role"])
        self._catalog[role.role_name] = role
        return role

    # -- matching --------------------------------------------------------

    async def find_best_role(self, operation: OperationContext) -> str | None:
        """ARN of the most specific matching role, or ``None``."""
        roles = await self.list_available_roles()
        patterns = patterns_for(operation.service, operation.operation_type, self._role_patterns)

        ranked: list[tuple[int, int, RoleDescriptor]] = []
        for index, role in enumerate(roles):
            score = role_specificity(role.role_name, patterns)
            if score is not None:
                ranked.append((score, -index, role))

        if not ranked:
            logger.info("No matching roles found for %s", operation.operation_type)
            return None

        # Highest score wins; ties keep catalog order.
        best = max(ranked, key=lambda item: (item[0], item[1]))[2]
        logger.info("Best role for %s: %s", operation.operation_type, best.role_name)
        return best.role_arn

    # -- assumption ------------------------------------------------------

    async def assume_role_for_operation(
        self,
        operation: OperationContext,
        role_arn: str | None = None,
    ) -> RoleSession | None:
        try:
            target = role_arn or await self.find_best_role(operation)
            if not target:
                raise RoleNotFound(f"No suitable role found for {operation.operation_type}")

            cached = self._sessions.get_valid(target)
            if cached is not None:
                logger.info("Reusing existing session for %s", target)
                return cached

            return await self._sessions.get_or_assume(
                target, lambda: self._assume_and_report(target, operation)
            )
        except (NoWingError, ClientError, BotoCoreError) as exc:
            logger.warning(
                "Role assumption for %s did not succeed: %s", operation.operation_type, exc
            )
            return None

    async def _assume_and_report(
        self, role_arn: str, operation: OperationContext
    ) -> RoleSession:
        session_name = self._session_name(operation)
        try:
            session = await asyncio.to_thread(
                self._assume_role_sync, role_arn, session_name, operation.tags
            )
        except RoleAssumptionFailed as exc:
            await self._report(role_arn, session_name, False, str(exc))
            raise
        await self._report(role_arn, session_name, True, None)
        return session

    async def _report(
        self, role_arn: str, session_name: str, success: bool, error: str | None
    ) -> None:
        if self._on_assumption is None:
            return
        await self._on_assumption(role_arn, session_name, success, error)

    def _session_name(self, operation: OperationContext) -> str:
        return _sanitize_session_name(f"no-wing-{operation.operation_type}-{epoch_millis()}")

    def _assume_role_sync(
        self,
        role_arn: str,
        session_name: str,
        tags: Mapping[str, str],
    ) -> RoleSession:
        params: dict[str, Any] = {
            "RoleArn": role_arn,
            "RoleSessionName": session_name,
            "DurationSeconds": self._session_duration_seconds,
        }
        if tags:
            params["Tags"] = [{"Key": k, "Value": v} for k, v in tags.items()]

        try:
            sts = self._clients.get_client("sts")
            response = sts.assume_role(**params)
        except ClientError as exc:
            code, message = client_error_code(exc)
            logger.warning(
                "STS failed: role=%s, session=%s, error=%s: %s",
                role_arn,
                session_name,
                code,
                message,
            )
            raise RoleAssumptionFailed(
                f"{code}: {message}", code=CLIENT_ERROR_CODES.get(code, "sts_error")
            ) from exc
        except BotoCoreError as exc:
            raise RoleAssumptionFailed(str(exc), code="sts_error") from exc

        creds = response.get("Credentials")
        if not creds:
            raise RoleAssumptionFailed("No credentials returned from assume role")

        logger.info("Assumed role: %s, session=%s", role_arn, session_name)
        return RoleSession(
            role_arn=role_arn,
            session_name=session_name,
            credentials=TemporaryCredentials(
                access_key_id=creds["AccessKeyId"],
                secret_access_key=creds["SecretAccessKey"],
                session_token=creds["SessionToken"],
                expiration=creds["Expiration"],
            ),
        )

    async def test_role_assumption(self, role_arn: str) -> bool:
        """Assume ``role_arn`` once (uncached) and confirm the credentials work."""
        check = OperationContext(service="sts", operation="test")
        try:
            session = await self._assume_and_report(role_arn, check)
            await asyncio.to_thread(self._confirm_identity, session)
        except (NoWingError, ClientError, BotoCoreError) as exc:
            logger.error("Role assumption test failed for %s: %s", role_arn, exc)
            return False
        logger.info("Role assumption test successful: %s", role_arn)
        return True

    def _confirm_identity(self, session: RoleSession) -> None:
        sts = self._clients.get_client_for_session("sts", session)
        try:
            sts.get_caller_identity()
        finally:
            self._clients.invalidate_session(session.role_arn)

    # -- housekeeping ----------------------------------------------------

    def get_active_sessions(self) -> list[RoleSession]:
        return self._sessions.active_sessions()

    def cleanup_expired_sessions(self) -> int:
        removed = self._sessions.evict_expired()
        if removed:
            logger.info("Cleaned up %d expired sessions", removed)
        return removed

    def clear_cache(self) -> None:
        self.invalidate_catalog()
        self._sessions.clear()
        logger.info("Role resolver cache cleared")


def _sanitize_session_name(name: str) -> str:
    """Sanitize for STS (2-64 chars, alphanumeric/=,.@_-)."""
    safe = re.sub(r"[^a-zA-Z0-9=,.@_-]", "-", name)
    safe = re.sub(r"-+", "-", safe).strip("-")
    if len(safe) > 64:
        suffix = hashlib.sha256(name.encode()).hexdigest()[:8]
        safe = safe[:55] + "-" + suffix
    return safe if len(safe) >= 2 else "no-wing-" + safe
