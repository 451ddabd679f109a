"""Shared sensitive-field masking utilities.

Provides ``redact_sensitive_fields`` -- a recursive, depth-limited function
that replaces values whose keys match known sensitive markers -- and
``copy_payload``, which detaches response payloads from live SDK objects
before they are retained in audit records.
"""

from __future__ import annotations

import json

from no_wing.utils.serialization import json_default

REDACTION_MARKER = "[REDACTED]"

_MAX_REDACT_DEPTH = 20

# Substring match, case-insensitive.
SENSITIVE_KEY_MARKERS: tuple[str, ...] = (
    "password",
    "secret",
    "key",
    "token",
    "credential",
)


def is_sensitive_key(key: object) -> bool:
    lowered = str(key).lower()
    return any(marker in lowered for marker in SENSITIVE_KEY_MARKERS)


def redact_sensitive_fields(
    value: object,
    *,
    mask: str = REDACTION_MARKER,
    depth: int = 0,
    max_depth: int = _MAX_REDACT_DEPTH,
) -> object:
    """Recursively replace sensitive values in dicts/lists.

    Keys are matched by *substring* against ``SENSITIVE_KEY_MARKERS``
    (case-insensitive).  When ``max_depth`` is exceeded the entire
    sub-tree is replaced with *mask*.  Applying the function to its own
    output returns an equal structure.
    """
    if depth >= max_depth:
        return mask
    if isinstance(value, dict):
        redacted: dict[str, object] = {}
        for key, val in value.items():
            if is_sensitive_key(key):
                redacted[key] = mask
            else:
                redacted[key] = redact_sensitive_fields(
                    val, mask=mask, depth=depth + 1, max_depth=max_depth,
                )
        return redacted
    if isinstance(value, (list, tuple)):
        return [
            redact_sensitive_fields(
                item, mask=mask, depth=depth + 1, max_depth=max_depth,
            )
            for item in value
        ]
    return value


def sanitize_parameters(params: dict[str, object] | None) -> dict[str, object]:
    if not params:
        return {}
    return redact_sensitive_fields(dict(params))  # type: ignore[return-value]


def copy_payload(payload: object) -> object:
    """Deep-copy a response payload through JSON so no live references survive."""
    if payload is None:
        return None
    return json.loads(json.dumps(payload, default=json_default))
