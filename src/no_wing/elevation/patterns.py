"""Per-operation-type permission pattern table."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

import yaml

from no_wing.domain.operations import OperationContext
from no_wing.elevation.models import PermissionPattern

DEFAULT_ENTRY = "default"

DEFAULT_PERMISSION_PATTERNS: tuple[PermissionPattern, ...] = (
    PermissionPattern(
        operation="cloudformation-deploy",
        required_actions=[
            "cloudformation:CreateStack",
            "cloudformation:UpdateStack",
            "cloudformation:DescribeStacks",
            "cloudformation:GetTemplate",
        ],
        optional_actions=[
            "cloudformation:DeleteStack",
            "cloudformation:ListStacks",
            "s3:GetObject",
            "s3:PutObject",
        ],
        resource_patterns=[
            "arn:aws:cloudformation:*:*:stack/no-wing-*/*",
            "arn:aws:s3:::no-wing-*/*",
        ],
        fallback_strategies=["read-only-validation", "dry-run", "manual-approval"],
    ),
    PermissionPattern(
        operation="lambda-deploy",
        required_actions=[
            "lambda:CreateFunction",
            "lambda:UpdateFunctionCode",
            "lambda:UpdateFunctionConfiguration",
            "lambda:GetFunction",
        ],
        optional_actions=["lambda:DeleteFunction", "lambda:ListFunctions", "iam:PassRole"],
        resource_patterns=[
            "arn:aws:lambda:*:*:function:no-wing-*",
            "arn:aws:iam::*:role/no-wing-*",
        ],
        fallback_strategies=["function-validation", "code-analysis", "staged-deployment"],
    ),
    PermissionPattern(
        operation="s3-operations",
        required_actions=["s3:GetObject", "s3:PutObject", "s3:ListBucket"],
        optional_actions=["s3:DeleteObject", "s3:GetBucketLocation", "s3:GetBucketVersioning"],
        resource_patterns=["arn:aws:s3:::no-wing-*", "arn:aws:s3:::no-wing-*/*"],
        fallback_strategies=["read-only-access", "presigned-urls", "manual-upload"],
    ),
    PermissionPattern(
        operation="deploy",
        required_actions=[
            "cloudformation:CreateStack",
            "cloudformation:UpdateStack",
            "cloudformation:DescribeStacks",
        ],
        resource_patterns=["arn:aws:cloudformation:*:*:stack/no-wing-*/*"],
        fallback_strategies=[
            "read-only-validation",
            "dry-run",
            "manual-approval",
            "staged-deployment",
        ],
    ),
    PermissionPattern(operation=DEFAULT_ENTRY),
)


class PatternTable:
    """Lookup table from operation type to ``PermissionPattern``.

    Lookup order: exact operation type, ``"<service>-operations"``, then the
    explicit ``default`` entry.
    """

    def __init__(self, patterns: Iterable[PermissionPattern] = DEFAULT_PERMISSION_PATTERNS) -> None:
        self._patterns: dict[str, PermissionPattern] = {p.operation: p for p in patterns}
        self._patterns.setdefault(DEFAULT_ENTRY, PermissionPattern(operation=DEFAULT_ENTRY))

    def lookup(self, operation: OperationContext) -> PermissionPattern:
        for key in (operation.operation_type, f"{operation.service}-operations"):
            pattern = self._patterns.get(key)
            if pattern is not None:
                return pattern
        return self._patterns[DEFAULT_ENTRY]

    def get(self, operation_type: str) -> PermissionPattern | None:
        return self._patterns.get(operation_type)

    def is_known(self, operation: OperationContext) -> bool:
        return self.lookup(operation).operation != DEFAULT_ENTRY

    def merged(self, overrides: Iterable[PermissionPattern]) -> "PatternTable":
        combined = dict(self._patterns)
        for pattern in overrides:
            combined[pattern.operation] = pattern
        return PatternTable(combined.values())

    def operation_types(self) -> list[str]:
        return sorted(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)


def _parse_patterns(data: Mapping[str, object]) -> list[PermissionPattern]:
    raw = data.get("patterns") or {}
    if not isinstance(raw, Mapping):
        raise ValueError("'patterns' must be a mapping of operation type to pattern")
    parsed: list[PermissionPattern] = []
    for operation, body in raw.items():
        body = dict(body or {})
        body.setdefault("operation", operation)
        parsed.append(PermissionPattern.model_validate(body))
    return parsed


def load_pattern_table(path: str | None) -> PatternTable:
    """Built-in table, extended/overridden by the YAML file at ``path``."""
    table = PatternTable()
    if not path:
        return table
    pattern_path = Path(path)
    if not pattern_path.exists():
        raise FileNotFoundError(f"Permission pattern file not found: {pattern_path}")
    with pattern_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return table.merged(_parse_patterns(data))
