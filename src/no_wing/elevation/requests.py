"""In-memory permission request store."""

from __future__ import annotations

import logging
import threading
import uuid
from collections import Counter
from datetime import timedelta

from no_wing.domain.operations import OperationContext
from no_wing.elevation.models import PermissionPattern, PermissionRequest
from no_wing.utils.time import utc_now

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return f"req-{uuid.uuid4().hex[:16]}"


def build_justification(operation: OperationContext, pattern: PermissionPattern) -> str:
    parts = [f"Agent requires permissions to perform {operation.operation_type} operation."]
    if pattern.required_actions and pattern.required_actions != ["*"]:
        parts.append(f"This operation typically requires: {', '.join(pattern.required_actions)}.")
    if operation.action:
        parts.append(f"Requested action: {operation.service}:{operation.action}.")
    if operation.resources:
        parts.append(f"Target resources: {', '.join(operation.resources)}.")
    parts.append("This is part of automated project management and deployment workflow.")
    return " ".join(parts)


class PermissionRequestStore:
    """Process-local store. Resolved and expired requests are retained."""

    def __init__(self, ttl_hours: int = 24) -> None:
        self._ttl = timedelta(hours=ttl_hours)
        self._requests: dict[str, PermissionRequest] = {}
        self._lock = threading.Lock()

    def create(
        self,
        operation: OperationContext,
        pattern: PermissionPattern,
        requester: str | None = None,
    ) -> PermissionRequest:
        now = utc_now()
        resources = list(operation.resources) or list(pattern.resource_patterns) or ["*"]
        request = PermissionRequest(
            id=new_request_id(),
            operation=operation.operation_type,
            service=operation.service,
            action=operation.action,
            actions=list(pattern.required_actions) or ["*"],
            optional_actions=list(pattern.optional_actions),
            resources=resources,
            justification=build_justification(operation, pattern),
            requester=requester,
            requested_at=now,
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._requests[request.id] = request
        logger.info(
            "Permission request created: %s (operation=%s, actions=%s, resources=%s)",
            request.id,
            request.operation,
            ", ".join(request.actions),
            ", ".join(request.resources),
        )
        return request

    def get(self, request_id: str) -> PermissionRequest | None:
        return self._requests.get(request_id)

    def approve(self, request_id: str, approver: str) -> bool:
        request = self._requests.get(request_id)
        if request is None or request.is_past_expiry():
            return False
        with self._lock:
            changed = request.approve(approver)
        if changed:
            logger.info("Permission request approved: %s by %s", request_id, approver)
        return changed

    def deny(self, request_id: str, approver: str) -> bool:
        request = self._requests.get(request_id)
        if request is None:
            return False
        with self._lock:
            changed = request.deny(approver)
        if changed:
            logger.info("Permission request denied: %s by %s", request_id, approver)
        return changed

    def cleanup_expired(self) -> int:
        """Move pending requests past their expiry to ``expired``."""
        now = utc_now()
        expired = 0
        with self._lock:
            for request in self._requests.values():
                if request.is_pending and request.is_past_expiry(now) and request.expire():
                    expired += 1
        if expired:
            logger.info("Expired %d permission requests", expired)
        return expired

    def list_approvable(self) -> list[PermissionRequest]:
        now = utc_now()
        pending = [
            r for r in self._requests.values() if r.is_pending and not r.is_past_expiry(now)
        ]
        return sorted(pending, key=lambda r: r.requested_at)

    def statistics(self) -> dict[str, int]:
        counts = Counter(r.status for r in self._requests.values())
        return {
            "total": len(self._requests),
            "pending": counts["pending"],
            "approved": counts["approved"],
            "denied": counts["denied"],
            "expired": counts["expired"],
        }

    def __len__(self) -> int:
        return len(self._requests)
