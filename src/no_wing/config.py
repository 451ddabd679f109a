"""Configuration management for the no-wing credential broker."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_config_logger = logging.getLogger(__name__)

STATE_DIR = ".no-wing"


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AWSSettings(BaseModel):
    default_region: str = Field(default="us-east-1")
    sts_region: str = Field(default="us-east-1")
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    max_retries: int = Field(default=3, ge=0, le=10)


class CredentialSettings(BaseModel):
    config_path: str = Field(default=f"./{STATE_DIR}/config.yaml")
    default_context: str | None = Field(
        default=None,
        description="Context activated at startup; falls back to the config file value.",
    )


class RoleSettings(BaseModel):
    path_prefix: str = Field(default="/")
    max_items: int = Field(default=100, ge=1, le=1000)
    session_duration_seconds: int = Field(default=3600, ge=900, le=43200)
    safety_margin_seconds: int = Field(default=300, ge=0, le=3600)
    catalog_ttl_seconds: int = Field(default=300, ge=0, le=86400)


class ElevationSettings(BaseModel):
    patterns_path: str | None = Field(
        default=None,
        description="Optional YAML file overriding/extending the permission pattern table.",
    )
    allow_direct_permissions: bool = Field(
        default=False,
        description=(
            "If False, the direct-permission step always declines so that "
            "operations run under an assumed role."
        ),
    )
    degradation_enabled: bool = Field(default=True)
    disabled_strategies: tuple[str, ...] = Field(default=())
    request_ttl_hours: int = Field(default=24, ge=1, le=720)


class AuditSettings(BaseModel):
    log_path: str = Field(default=f"./{STATE_DIR}/audit.log")
    buffer_size: int = Field(default=100, ge=1, le=10_000)
    query_limit: int = Field(default=1000, ge=1)
    log_group: str | None = Field(default=None)
    log_stream: str | None = Field(default=None)
    trail_lookback_hours: int = Field(default=24, ge=1, le=2160)

    @field_validator("log_group", "log_stream")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)
    roles: RoleSettings = Field(default_factory=RoleSettings)
    elevation: ElevationSettings = Field(default_factory=ElevationSettings)
    audit: AuditSettings = Field(default_factory=AuditSettings)


ENV_KEYS = {
    "log_level": "NO_WING_LOG_LEVEL",
    "log_file": "NO_WING_LOG_FILE",
    "aws_region": "AWS_DEFAULT_REGION",
    "sts_region": "NO_WING_STS_REGION",
    "config_path": "NO_WING_CONFIG_PATH",
    "default_context": "NO_WING_DEFAULT_CONTEXT",
    "patterns_path": "NO_WING_PATTERNS_PATH",
    "audit_log_path": "NO_WING_AUDIT_LOG_PATH",
    "audit_log_group": "NO_WING_AUDIT_LOG_GROUP",
    "audit_log_stream": "NO_WING_AUDIT_LOG_STREAM",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def _resolve_path(path: str) -> str:
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path.cwd() / candidate
    return str(candidate.resolve())


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=Path.cwd() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    patterns_path_env = os.getenv(ENV_KEYS["patterns_path"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "aws": {
            "default_region": (
                os.getenv("AWS_REGION")
                or os.getenv(ENV_KEYS["aws_region"])
                or AWSSettings().default_region
            ),
            "sts_region": os.getenv(ENV_KEYS["sts_region"], AWSSettings().sts_region),
            "sdk_timeout_seconds": _env_int(
                "NO_WING_SDK_TIMEOUT_SECONDS", AWSSettings().sdk_timeout_seconds
            ),
            "max_retries": _env_int("NO_WING_MAX_RETRIES", AWSSettings().max_retries),
        },
        "credentials": {
            "config_path": _resolve_path(
                os.getenv(ENV_KEYS["config_path"], CredentialSettings().config_path)
            ),
            "default_context": os.getenv(ENV_KEYS["default_context"]) or None,
        },
        "roles": {
            "path_prefix": os.getenv("NO_WING_ROLE_PATH_PREFIX", RoleSettings().path_prefix),
            "max_items": _env_int("NO_WING_ROLE_MAX_ITEMS", RoleSettings().max_items),
            "session_duration_seconds": _env_int(
                "NO_WING_SESSION_DURATION_SECONDS",
                RoleSettings().session_duration_seconds,
            ),
            "safety_margin_seconds": _env_int(
                "NO_WING_SESSION_SAFETY_MARGIN_SECONDS",
                RoleSettings().safety_margin_seconds,
            ),
            "catalog_ttl_seconds": _env_int(
                "NO_WING_ROLE_CATALOG_TTL_SECONDS",
                RoleSettings().catalog_ttl_seconds,
            ),
        },
        "elevation": {
            "patterns_path": _resolve_path(patterns_path_env) if patterns_path_env else None,
            "allow_direct_permissions": _env_bool(
                "NO_WING_ALLOW_DIRECT_PERMISSIONS",
                ElevationSettings().allow_direct_permissions,
            ),
            "degradation_enabled": _env_bool(
                "NO_WING_DEGRADATION_ENABLED",
                ElevationSettings().degradation_enabled,
            ),
            "disabled_strategies": tuple(
                _split_csv(os.getenv("NO_WING_DISABLED_STRATEGIES"))
            ),
            "request_ttl_hours": _env_int(
                "NO_WING_REQUEST_TTL_HOURS", ElevationSettings().request_ttl_hours
            ),
        },
        "audit": {
            "log_path": _resolve_path(
                os.getenv(ENV_KEYS["audit_log_path"], AuditSettings().log_path)
            ),
            "buffer_size": _env_int("NO_WING_AUDIT_BUFFER_SIZE", AuditSettings().buffer_size),
            "query_limit": _env_int("NO_WING_AUDIT_QUERY_LIMIT", AuditSettings().query_limit),
            "log_group": os.getenv(ENV_KEYS["audit_log_group"]),
            "log_stream": os.getenv(ENV_KEYS["audit_log_stream"]),
            "trail_lookback_hours": _env_int(
                "NO_WING_TRAIL_LOOKBACK_HOURS", AuditSettings().trail_lookback_hours
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    return settings
