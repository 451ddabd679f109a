from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

import pytest
from click.testing import CliRunner

from no_wing import cli
from no_wing.audit.models import AuditQuery, ComplianceReport, ComplianceSummary
from no_wing.credentials.models import ResolvedIdentity
from no_wing.credentials.store import build_context
from no_wing.domain.operations import OperationContext
from no_wing.elevation.models import ElevationResult
from no_wing.errors import UnknownContext


class FakeBroker:
    def __init__(self) -> None:
        self.closed = False
        self.valid = True
        self.queries: list[AuditQuery] = []
        self.elevated: list[OperationContext] = []
        self.switched: list[str] = []
        self.elevator = self

    async def aclose(self) -> None:
        self.closed = True

    async def who_am_i(self, name: str | None = None) -> ResolvedIdentity:
        return ResolvedIdentity(
            account_id="111111111111",
            principal_arn=f"arn:aws:iam::111111111111:user/{name or 'agent'}",
            user_id="AIDATEST",
        )

    async def switch_context(self, name: str) -> Any:
        if name == "ghost":
            raise UnknownContext(name)
        self.switched.append(name)
        return build_context(name, profile=f"{name}-profile")

    async def test_credentials(self, name: str | None = None) -> bool:
        return self.valid

    async def elevate(self, operation: OperationContext) -> ElevationResult:
        self.elevated.append(operation)
        return ElevationResult(
            success=True,
            method="degraded",
            message="Dry-run completed",
            alternatives=["manual-execution"],
        )

    def get_permission_request(self, request_id: str) -> None:
        return None

    async def query_audit_events(self, query: AuditQuery) -> list[Any]:
        self.queries.append(query)
        return []

    async def generate_compliance_report(self, start: datetime, end: datetime) -> ComplianceReport:
        return ComplianceReport(
            report_id="report-1",
            generated_at=end,
            period_start=start,
            period_end=end,
            summary=ComplianceSummary(total_events=0),
        )

    async def verify_centralized_logging(self) -> dict[str, object]:
        return {"is_configured": True, "recent_event_count": 3, "last_event_time": None, "errors": []}


@pytest.fixture
def broker(monkeypatch: pytest.MonkeyPatch) -> FakeBroker:
    fake = FakeBroker()
    monkeypatch.setattr(cli, "_build_broker", lambda: fake)
    return fake


def test_whoami(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["whoami", "--context", "operator"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["principal_arn"].endswith("user/operator")
    assert broker.closed


def test_switch_to_unknown_context_fails(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["switch", "ghost"])

    assert result.exit_code == 1
    assert "[unknown_context]" in result.output
    assert broker.closed


def test_group_context_option_switches_before_command(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["--context", "operator", "test-credentials"])

    assert result.exit_code == 0, result.output
    assert broker.switched == ["operator"]
    assert broker.closed


def test_group_context_option_rejects_unknown_context(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["--context", "ghost", "whoami"])

    assert result.exit_code == 1
    assert "[unknown_context]" in result.output
    assert broker.closed


def test_switch_reports_active_context(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["switch", "operator"])

    assert result.exit_code == 0, result.output
    assert result.output.startswith("Active context: operator")
    assert broker.switched == ["operator"]


def test_invalid_credentials_exit_non_zero(broker: FakeBroker) -> None:
    broker.valid = False

    result = CliRunner().invoke(cli.main, ["test-credentials"])

    assert result.exit_code == 1
    assert "NOT valid" in result.output


def test_elevate_prints_result(broker: FakeBroker) -> None:
    result = CliRunner().invoke(
        cli.main,
        ["elevate", "lambda", "--action", "deploy", "--resource", "arn:aws:lambda:::function:no-wing-a"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["method"] == "degraded"
    assert "request" not in payload
    [operation] = broker.elevated
    assert operation.operation_type == "lambda-deploy"
    assert operation.resources == ("arn:aws:lambda:::function:no-wing-a",)


def test_audit_events_builds_query(broker: FakeBroker) -> None:
    result = CliRunner().invoke(
        cli.main,
        ["audit", "events", "--service", "s3", "--failed-only", "--limit", "5"],
    )

    assert result.exit_code == 0, result.output
    assert json.loads(result.output) == []
    [query] = broker.queries
    assert query.services == ["s3"]
    assert query.event_types is None
    assert query.success is False
    assert query.limit == 5
    assert query.start_time is not None and query.start_time < datetime.now(timezone.utc)


def test_audit_report_omits_events(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["audit", "report", "--since-hours", "2"])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["report_id"] == "report-1"
    assert "events" not in payload
    assert payload["violations"] == []


def test_audit_verify(broker: FakeBroker) -> None:
    result = CliRunner().invoke(cli.main, ["audit", "verify"])

    assert result.exit_code == 0, result.output
    assert json.loads(result.output)["recent_event_count"] == 3
