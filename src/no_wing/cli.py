"""Command-line entry point (``no-wing``)."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any, TypeVar

import click

from no_wing import __version__
from no_wing.audit.models import AuditQuery
from no_wing.broker import NoWingBroker
from no_wing.domain.operations import OperationContext
from no_wing.errors import NoWingError
from no_wing.logging_utils import configure_logging
from no_wing.utils.serialization import json_default
from no_wing.utils.time import utc_now

T = TypeVar("T")


def _build_broker() -> NoWingBroker:
    configure_logging()
    return NoWingBroker.from_settings()


def _run(action: Callable[[NoWingBroker], Awaitable[T]]) -> T:
    """Run ``action`` against a fresh broker, always flushing the audit log.

    A context chosen with the group-level ``--context`` option is switched
    to (and audited) before ``action`` runs.
    """
    selected = (click.get_current_context().obj or {}).get("context")

    async def runner() -> T:
        broker = _build_broker()
        try:
            if selected:
                await broker.switch_context(selected)
            return await action(broker)
        finally:
            await broker.aclose()

    try:
        return asyncio.run(runner())
    except NoWingError as exc:
        raise click.ClickException(f"[{exc.code}] {exc}") from exc


def _echo_json(payload: Any) -> None:
    click.echo(json.dumps(payload, indent=2, default=json_default))


@click.group()
@click.version_option(__version__, prog_name="no-wing")
@click.option(
    "--context",
    "context_name",
    default=None,
    help="Acting context for this invocation (default: NO_WING_DEFAULT_CONTEXT or the config file).",
)
@click.pass_context
def main(ctx: click.Context, context_name: str | None) -> None:
    """Broker AWS credentials between an operator and an automated agent.

    The active context lives only for one invocation; choose it with
    --context or NO_WING_DEFAULT_CONTEXT.
    """
    ctx.ensure_object(dict)["context"] = context_name


@main.command()
@click.option("--context", "context_name", default=None, help="Context to inspect (default: active)")
def whoami(context_name: str | None) -> None:
    """Show the resolved identity of a credential context."""
    identity = _run(lambda broker: broker.who_am_i(context_name))
    _echo_json(
        {
            "account_id": identity.account_id,
            "principal_arn": identity.principal_arn,
            "user_id": identity.user_id,
        }
    )


@main.command()
@click.argument("name")
def switch(name: str) -> None:
    """Switch the active credential context for this invocation.

    The switch is audited but not persisted. Use the group-level --context
    option or NO_WING_DEFAULT_CONTEXT to act as a given context.
    """
    context = _run(lambda broker: broker.switch_context(name))
    click.echo(f"Active context: {context.name} ({context.source.describe()})")


@main.command("test-credentials")
@click.option("--context", "context_name", default=None)
def test_credentials(context_name: str | None) -> None:
    """Exit non-zero when the context's credentials are unusable."""
    ok = _run(lambda broker: broker.test_credentials(context_name))
    click.echo("Credentials are valid" if ok else "Credentials are NOT valid")
    if not ok:
        raise SystemExit(1)


@main.command()
@click.argument("service")
@click.option("--action", default="", help="Service action, e.g. deploy")
@click.option("--operation", default=None, help="Explicit operation type")
@click.option("--resource", "resources", multiple=True, help="Target resource ARN (repeatable)")
def elevate(service: str, action: str, operation: str | None, resources: tuple[str, ...]) -> None:
    """Walk the elevation ladder for an operation and print the outcome."""
    op = OperationContext(service=service, action=action, operation=operation, resources=resources)

    async def action_fn(broker: NoWingBroker) -> dict[str, object]:
        result = await broker.elevate(op)
        payload = result.to_dict()
        if result.request_id:
            request = broker.elevator.get_permission_request(result.request_id)
            if request is not None:
                payload["request"] = request.to_dict()
        return payload

    _echo_json(_run(action_fn))


@main.group()
def audit() -> None:
    """Audit log queries and compliance checks."""


@audit.command("events")
@click.option("--since-hours", type=int, default=24, show_default=True)
@click.option("--event-type", "event_types", multiple=True)
@click.option("--service", "services", multiple=True)
@click.option("--failed-only", is_flag=True, default=False)
@click.option("--limit", type=int, default=None)
def audit_events(
    since_hours: int,
    event_types: tuple[str, ...],
    services: tuple[str, ...],
    failed_only: bool,
    limit: int | None,
) -> None:
    """List audit events."""
    query = AuditQuery(
        start_time=utc_now() - timedelta(hours=since_hours),
        event_types=list(event_types) or None,
        services=list(services) or None,
        success=False if failed_only else None,
        limit=limit,
    )
    events = _run(lambda broker: broker.query_audit_events(query))
    _echo_json([event.model_dump(mode="json") for event in events])


@audit.command("report")
@click.option("--since-hours", type=int, default=24, show_default=True)
def audit_report(since_hours: int) -> None:
    """Generate a compliance report for the recent window."""
    end = utc_now()
    start = end - timedelta(hours=since_hours)
    report = _run(lambda broker: broker.generate_compliance_report(start, end))
    _echo_json(report.model_dump(mode="json", exclude={"events"}))


@audit.command("verify")
def audit_verify() -> None:
    """Check that CloudTrail records recent activity."""
    _echo_json(_run(lambda broker: broker.verify_centralized_logging()))


if __name__ == "__main__":
    main()
