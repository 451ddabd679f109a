"""Role-name patterns per operation type and specificity ranking."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from functools import lru_cache
from types import MappingProxyType

DEFAULT_ROLE_PATTERNS: tuple[str, ...] = ("no-wing-*",)

_DEPLOYMENT = ("no-wing-deploy-*", "no-wing-cloudformation-*", "*-deployment-role")
_MONITORING = ("no-wing-monitoring-*", "no-wing-cloudwatch-*", "*-monitoring-role")

ROLE_PATTERNS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "deployment": _DEPLOYMENT,
        "cloudformation": _DEPLOYMENT,
        "s3": ("no-wing-s3-*", "no-wing-storage-*", "*-s3-access-role"),
        "lambda": ("no-wing-lambda-*", "no-wing-function-*", "*-lambda-execution-role"),
        "monitoring": _MONITORING,
        "logs": _MONITORING,
        "cloudwatch": _MONITORING,
    }
)

WILDCARD_PENALTY = 1


def patterns_for(
    service: str,
    operation_type: str,
    table: Mapping[str, Sequence[str]] = ROLE_PATTERNS,
) -> tuple[str, ...]:
    """Service entry first, then operation type, then the catch-all."""
    for key in (service, operation_type):
        patterns = table.get(key)
        if patterns:
            return tuple(patterns)
    return DEFAULT_ROLE_PATTERNS


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    parts = []
    for char in pattern:
        if char == "*":
            parts.append(".*")
        elif char == "?":
            parts.append(".")
        else:
            parts.append(re.escape(char))
    return re.compile("^" + "".join(parts) + "$", re.IGNORECASE)


def matches_pattern(role_name: str, pattern: str) -> bool:
    return _compile_glob(pattern).match(role_name) is not None


def pattern_specificity(pattern: str) -> int:
    """Literal character count minus a penalty per wildcard."""
    wildcards = pattern.count("*") + pattern.count("?")
    literal = len(pattern) - wildcards
    return literal - WILDCARD_PENALTY * wildcards


def role_specificity(role_name: str, patterns: Sequence[str]) -> int | None:
    """Best specificity among matching patterns, or ``None`` if none match."""
    scores = [pattern_specificity(p) for p in patterns if matches_pattern(role_name, p)]
    return max(scores) if scores else None
