from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from conftest import FakeClients, FakeIAM, FakeSTS, client_error, role_arn
from no_wing.domain.operations import OperationContext
from no_wing.roles.patterns import matches_pattern, patterns_for, pattern_specificity
from no_wing.roles.resolver import RoleResolver, _sanitize_session_name

DEPLOY = OperationContext(service="cloudformation", action="deploy")


def _resolver(
    roles: list[str],
    sts: FakeSTS | None = None,
    iam: FakeIAM | None = None,
    **kwargs: object,
) -> tuple[RoleResolver, FakeClients]:
    clients = FakeClients(iam=iam or FakeIAM(roles), sts=sts or FakeSTS())
    return RoleResolver(clients, **kwargs), clients  # type: ignore[arg-type]


def test_pattern_specificity_penalizes_wildcards() -> None:
    assert pattern_specificity("no-wing-*") == 9 - 2
    assert pattern_specificity("no-wing-deploy-*") > pattern_specificity("no-wing-*")
    assert pattern_specificity("no-wing-?") == pattern_specificity("no-wing-*")


def test_glob_matching_is_case_insensitive() -> None:
    assert matches_pattern("No-Wing-Deploy-Prod", "no-wing-deploy-*")
    assert matches_pattern("no-wing-s3-a", "no-wing-s3-?")
    assert not matches_pattern("no-wing-s3-ab", "no-wing-s3-?")


def test_patterns_for_falls_back_to_default() -> None:
    assert patterns_for("sqs", "sqs-send") == ("no-wing-*",)
    assert "no-wing-lambda-*" in patterns_for("lambda", "lambda-deploy")


@pytest.mark.asyncio
async def test_find_best_role_prefers_most_specific_pattern() -> None:
    resolver, _ = _resolver(
        ["team-deployment-role", "no-wing-deploy-prod", "no-wing-cloudformation-stacks"]
    )

    best = await resolver.find_best_role(DEPLOY)

    assert best == role_arn("no-wing-cloudformation-stacks")


@pytest.mark.asyncio
async def test_find_best_role_ties_keep_catalog_order() -> None:
    resolver, _ = _resolver(["no-wing-deploy-blue", "no-wing-deploy-green"])

    assert await resolver.find_best_role(DEPLOY) == role_arn("no-wing-deploy-blue")


@pytest.mark.asyncio
async def test_deploy_role_chosen_over_storage_role() -> None:
    resolver, _ = _resolver(["no-wing-s3-artifacts", "no-wing-deploy-main"])

    assert await resolver.find_best_role(DEPLOY) == role_arn("no-wing-deploy-main")


@pytest.mark.asyncio
async def test_no_matching_role_skips_sts() -> None:
    sts = FakeSTS()
    reported: list[tuple[str, bool]] = []

    async def on_assumption(arn: str, name: str, success: bool, error: str | None) -> None:
        reported.append((arn, success))

    resolver, _ = _resolver(["analytics-reader"], sts=sts, on_assumption=on_assumption)

    assert await resolver.assume_role_for_operation(DEPLOY) is None
    assert sts.assume_calls == []
    assert reported == []


@pytest.mark.asyncio
async def test_assumed_session_is_cached() -> None:
    sts = FakeSTS()
    resolver, _ = _resolver(["no-wing-deploy-main"], sts=sts)

    first = await resolver.assume_role_for_operation(DEPLOY)
    second = await resolver.assume_role_for_operation(DEPLOY)

    assert first is not None and first is second
    assert len(sts.assume_calls) == 1
    call = sts.assume_calls[0]
    assert call["RoleArn"] == role_arn("no-wing-deploy-main")
    assert call["DurationSeconds"] == 3600
    assert call["RoleSessionName"].startswith("no-wing-cloudformation-deploy-")
    assert "Tags" not in call


@pytest.mark.asyncio
async def test_session_inside_safety_margin_is_replaced() -> None:
    sts = FakeSTS(expires_in=timedelta(minutes=4))
    resolver, _ = _resolver(["no-wing-deploy-main"], sts=sts, safety_margin_seconds=300)

    first = await resolver.assume_role_for_operation(DEPLOY)
    second = await resolver.assume_role_for_operation(DEPLOY)

    assert first is not None and second is not None
    assert first is not second
    assert len(sts.assume_calls) == 2


@pytest.mark.asyncio
async def test_concurrent_assumptions_share_one_sts_call() -> None:
    sts = FakeSTS()
    resolver, _ = _resolver(["no-wing-deploy-main"], sts=sts)

    first, second = await asyncio.gather(
        resolver.assume_role_for_operation(DEPLOY),
        resolver.assume_role_for_operation(DEPLOY),
    )

    assert first is second
    assert len(sts.assume_calls) == 1


@pytest.mark.asyncio
async def test_access_denied_returns_none_and_reports_failure() -> None:
    sts = FakeSTS(fail_with=client_error("AccessDenied", "not allowed"))
    reported: list[tuple[str, bool, str | None]] = []

    async def on_assumption(arn: str, name: str, success: bool, error: str | None) -> None:
        reported.append((arn, success, error))

    resolver, _ = _resolver(["no-wing-deploy-main"], sts=sts, on_assumption=on_assumption)

    assert await resolver.assume_role_for_operation(DEPLOY) is None
    assert len(reported) == 1
    arn, success, error = reported[0]
    assert arn == role_arn("no-wing-deploy-main")
    assert success is False
    assert error is not None and "AccessDenied" in error


@pytest.mark.asyncio
async def test_successful_assumption_is_reported() -> None:
    reported: list[bool] = []

    async def on_assumption(arn: str, name: str, success: bool, error: str | None) -> None:
        reported.append(success)

    resolver, _ = _resolver(["no-wing-deploy-main"])
    resolver.set_assumption_callback(on_assumption)

    await resolver.assume_role_for_operation(DEPLOY)

    assert reported == [True]


@pytest.mark.asyncio
async def test_operation_tags_become_session_tags() -> None:
    sts = FakeSTS()
    resolver, _ = _resolver(["no-wing-s3-artifacts"], sts=sts)
    op = OperationContext(service="s3", action="put-object", tags={"project": "demo"})

    await resolver.assume_role_for_operation(op)

    assert sts.assume_calls[0]["Tags"] == [{"Key": "project", "Value": "demo"}]


@pytest.mark.asyncio
async def test_listing_failure_yields_empty_catalog() -> None:
    iam = FakeIAM([], fail_with=client_error("AccessDenied", "no", "ListRoles"))
    resolver, _ = _resolver([], iam=iam)

    assert await resolver.list_available_roles() == []
    assert await resolver.find_best_role(DEPLOY) is None


@pytest.mark.asyncio
async def test_catalog_is_paginated_and_cached() -> None:
    iam = FakeIAM(["no-wing-a", "no-wing-b", "no-wing-c"], page_size=2)
    resolver, _ = _resolver([], iam=iam, path_prefix="/no-wing/")

    roles = await resolver.list_available_roles()
    again = await resolver.list_available_roles()

    assert [r.role_name for r in roles] == ["no-wing-a", "no-wing-b", "no-wing-c"]
    assert [r.role_name for r in again] == ["no-wing-a", "no-wing-b", "no-wing-c"]
    assert len(iam.list_calls) == 2
    assert iam.list_calls[0]["PathPrefix"] == "/no-wing/"
    assert iam.list_calls[1]["Marker"] == "2"

    resolver.invalidate_catalog()
    await resolver.list_available_roles()
    assert len(iam.list_calls) == 4


@pytest.mark.asyncio
async def test_get_role_info_uses_iam_on_cache_miss() -> None:
    resolver, _ = _resolver(["no-wing-deploy-main"])

    info = await resolver.get_role_info(role_arn("no-wing-deploy-main"))
    missing = await resolver.get_role_info(role_arn("ghost"))

    assert info is not None and info.role_name == "no-wing-deploy-main"
    assert missing is None


@pytest.mark.asyncio
async def test_role_assumption_check_is_not_cached() -> None:
    sts = FakeSTS()
    resolver, clients = _resolver(["no-wing-deploy-main"], sts=sts)
    arn = role_arn("no-wing-deploy-main")

    assert await resolver.test_role_assumption(arn) is True
    assert sts.identity_calls == 1
    assert clients.invalidated == [arn]
    assert resolver.get_active_sessions() == []


@pytest.mark.asyncio
async def test_role_assumption_check_failure() -> None:
    sts = FakeSTS(fail_with=client_error("AccessDenied", "trust policy"))
    resolver, _ = _resolver([], sts=sts)

    assert await resolver.test_role_assumption(role_arn("no-wing-deploy-main")) is False


@pytest.mark.asyncio
async def test_cleanup_expired_sessions() -> None:
    sts = FakeSTS(expires_in=timedelta(minutes=1))
    resolver, _ = _resolver(["no-wing-deploy-main"], sts=sts, safety_margin_seconds=0)

    await resolver.assume_role_for_operation(DEPLOY)
    assert len(resolver.get_active_sessions()) == 1

    resolver._sessions._safety_margin_seconds = 600  # noqa: SLF001
    assert resolver.cleanup_expired_sessions() == 1
    assert resolver.get_active_sessions() == []


def test_session_names_follow_sts_rules() -> None:
    name = _sanitize_session_name("no-wing-s3 upload/" + "x" * 80)

    assert len(name) <= 64
    assert " " not in name and "/" not in name
    assert name.startswith("no-wing-s3-upload-")
