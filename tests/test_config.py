from __future__ import annotations

from pathlib import Path

import pytest

from no_wing import config


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    for key in (*config.ENV_KEYS.values(), "AWS_REGION", "NO_WING_AUDIT_BUFFER_SIZE"):
        monkeypatch.delenv(key, raising=False)


def test_split_csv_drops_blanks() -> None:
    assert config._split_csv(" dry-run, ,manual-approval,, ") == ["dry-run", "manual-approval"]
    assert config._split_csv(None) == []


def test_resolve_path_is_relative_to_cwd(tmp_path: Path) -> None:
    assert config._resolve_path("./.no-wing/audit.log") == str(
        (tmp_path / ".no-wing" / "audit.log").resolve()
    )


def test_env_int_uses_default_for_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_WING_TEST_INT", "")
    assert config._env_int("NO_WING_TEST_INT", 7) == 7


def test_env_int_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_WING_TEST_INT", "many")
    assert config._env_int("NO_WING_TEST_INT", 42) == 42


@pytest.mark.parametrize(("raw", "expected"), [("1", True), ("YES", True), ("off", False)])
def test_env_bool(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("NO_WING_TEST_BOOL", raw)
    assert config._env_bool("NO_WING_TEST_BOOL", not expected) is expected


def test_defaults(tmp_path: Path) -> None:
    settings = config.load_settings()

    assert settings.aws.default_region == "us-east-1"
    assert settings.credentials.config_path == str((tmp_path / ".no-wing" / "config.yaml").resolve())
    assert settings.credentials.default_context is None
    assert settings.audit.log_path == str((tmp_path / ".no-wing" / "audit.log").resolve())
    assert settings.audit.buffer_size == 100
    assert settings.audit.log_group is None
    assert settings.elevation.allow_direct_permissions is False
    assert settings.elevation.degradation_enabled is True
    assert settings.elevation.request_ttl_hours == 24
    assert settings.roles.safety_margin_seconds == 300


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("NO_WING_DEFAULT_CONTEXT", "agent")
    monkeypatch.setenv("NO_WING_AUDIT_LOG_GROUP", "  /no-wing/audit  ")
    monkeypatch.setenv("NO_WING_AUDIT_LOG_STREAM", "   ")
    monkeypatch.setenv("NO_WING_DISABLED_STRATEGIES", "dry-run,manual-approval")
    monkeypatch.setenv("NO_WING_DEGRADATION_ENABLED", "false")

    settings = config.load_settings()

    assert settings.aws.default_region == "eu-west-1"
    assert settings.credentials.default_context == "agent"
    assert settings.audit.log_group == "/no-wing/audit"
    assert settings.audit.log_stream is None
    assert settings.elevation.disabled_strategies == ("dry-run", "manual-approval")
    assert settings.elevation.degradation_enabled is False


def test_settings_are_cached(monkeypatch: pytest.MonkeyPatch) -> None:
    first = config.load_settings()
    monkeypatch.setenv("AWS_REGION", "ap-south-1")

    assert config.load_settings() is first


def test_invalid_values_raise_runtime_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NO_WING_AUDIT_BUFFER_SIZE", "0")

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()
