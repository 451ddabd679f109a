"""Error taxonomy for the credential broker."""

from __future__ import annotations


class NoWingError(Exception):
    """Base error. ``code`` is a short machine-readable reason."""

    default_code = "no_wing_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code or self.default_code


class UnknownContext(NoWingError):
    """Raised when switching to or validating an unregistered context."""

    default_code = "unknown_context"

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown credential context: {name!r}")
        self.name = name


class CredentialInvalid(NoWingError):
    """Expired, missing or otherwise unusable credentials."""

    default_code = "credential_invalid"


class UnsupportedService(NoWingError, ValueError):
    default_code = "unsupported_service"


class RoleNotFound(NoWingError):
    default_code = "role_not_found"


class RoleAssumptionFailed(NoWingError):
    """Trust-policy or permission denial while assuming a role."""

    default_code = "role_assumption_failed"


class DegradedStrategyFailed(NoWingError):
    default_code = "degraded_strategy_failed"

    def __init__(self, strategy: str, message: str) -> None:
        super().__init__(f"{strategy}: {message}")
        self.strategy = strategy


class PermissionRequestRequired(NoWingError):
    """Terminal signal that a human must review a permission request.

    Not an operational failure: the ladder completed and produced a request.
    """

    default_code = "permission_request_required"

    def __init__(self, request_id: str, message: str | None = None) -> None:
        super().__init__(message or f"Permission request {request_id} awaits approval")
        self.request_id = request_id


class AuditWriteFailed(NoWingError):
    """The durable local audit log could not be written."""

    default_code = "audit_write_failed"


# STS/IAM error codes mapped to short reasons.
CLIENT_ERROR_CODES = {
    "AccessDenied": "access_denied",
    "AccessDeniedException": "access_denied",
    "ExpiredToken": "token_expired",
    "ExpiredTokenException": "token_expired",
    "InvalidClientTokenId": "invalid_client_token",
    "SignatureDoesNotMatch": "signature_mismatch",
    "MalformedPolicyDocument": "policy_error",
    "PackedPolicyTooLarge": "policy_too_large",
    "RegionDisabledException": "region_disabled",
    "NoSuchEntity": "not_found",
}


def client_error_code(exc: Exception) -> tuple[str, str]:
    """Return ``(aws_code, message)`` for a botocore ``ClientError``-like exception."""
    response = getattr(exc, "response", None) or {}
    error = response.get("Error", {}) if isinstance(response, dict) else {}
    return str(error.get("Code", "Unknown")), str(error.get("Message", str(exc)))
