"""Domain objects for AWS operations."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType


@dataclass(frozen=True)
class OperationContext:
    """What a caller intends to do.

    Immutable; embedded in audit events and permission requests but never
    persisted on its own. ``operation`` selects the permission pattern and
    defaults to ``"<service>-<action>"``.
    """

    service: str
    action: str = ""
    operation: str | None = None
    resources: tuple[str, ...] = ()
    tags: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType({}), hash=False
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "service", self.service.strip().lower())
        object.__setattr__(self, "resources", tuple(self.resources))
        object.__setattr__(self, "tags", MappingProxyType(dict(self.tags)))

    @property
    def operation_type(self) -> str:
        if self.operation:
            return self.operation
        if self.action:
            return f"{self.service}-{self.action}"
        return self.service
