from __future__ import annotations

from datetime import timedelta
from typing import Any, Iterator

import pytest
from botocore.exceptions import ClientError

from no_wing.config import _load_settings_cached
from no_wing.credentials.models import ResolvedIdentity, TemporaryCredentials
from no_wing.credentials.store import CredentialStore, build_context
from no_wing.errors import UnsupportedService
from no_wing.roles.models import RoleSession
from no_wing.utils.time import utc_now

ACCOUNT_ID = "111111111111"


def client_error(code: str, message: str = "request failed", operation: str = "AssumeRole") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def role_arn(name: str) -> str:
    return f"arn:aws:iam::{ACCOUNT_ID}:role/{name}"


def make_session(
    arn: str,
    expires_in: timedelta = timedelta(hours=1),
    session_name: str = "no-wing-test-1",
    access_key_id: str = "ASIATESTKEY",
) -> RoleSession:
    return RoleSession(
        role_arn=arn,
        session_name=session_name,
        credentials=TemporaryCredentials(
            access_key_id=access_key_id,
            secret_access_key="temp-secret",
            session_token="temp-token",
            expiration=utc_now() + expires_in,
        ),
    )


class FakeSTS:
    def __init__(
        self,
        *,
        fail_with: Exception | None = None,
        expires_in: timedelta = timedelta(hours=1),
    ) -> None:
        self.fail_with = fail_with
        self.expires_in = expires_in
        self.assume_calls: list[dict[str, Any]] = []
        self.identity_calls = 0

    def assume_role(self, **kwargs: Any) -> dict[str, Any]:
        self.assume_calls.append(kwargs)
        if self.fail_with is not None:
            raise self.fail_with
        n = len(self.assume_calls)
        return {
            "Credentials": {
                "AccessKeyId": f"ASIAFAKE{n:04d}",
                "SecretAccessKey": f"secret-{n}",
                "SessionToken": f"token-{n}",
                "Expiration": utc_now() + self.expires_in,
            }
        }

    def get_caller_identity(self) -> dict[str, str]:
        self.identity_calls += 1
        return {
            "Account": ACCOUNT_ID,
            "Arn": f"arn:aws:sts::{ACCOUNT_ID}:assumed-role/test/session",
            "UserId": "AROATEST:session",
        }


class FakeIAM:
    def __init__(
        self,
        role_names: list[str],
        *,
        page_size: int | None = None,
        fail_with: Exception | None = None,
    ) -> None:
        self.roles = [{"RoleName": name, "Arn": role_arn(name)} for name in role_names]
        self.page_size = page_size
        self.fail_with = fail_with
        self.list_calls: list[dict[str, Any]] = []

    def list_roles(self, **kwargs: Any) -> dict[str, Any]:
        self.list_calls.append(kwargs)
        if self.fail_with is not None:
            raise self.fail_with
        if self.page_size is None:
            return {"Roles": list(self.roles), "IsTruncated": False}
        start = int(kwargs.get("Marker") or 0)
        end = start + self.page_size
        truncated = end < len(self.roles)
        response: dict[str, Any] = {"Roles": self.roles[start:end], "IsTruncated": truncated}
        if truncated:
            response["Marker"] = str(end)
        return response

    def get_role(self, RoleName: str) -> dict[str, Any]:  # noqa: N803
        for role in self.roles:
            if role["RoleName"] == RoleName:
                return {"Role": role}
        raise client_error("NoSuchEntity", f"role {RoleName} not found", "GetRole")


class FakeClients:
    """Stands in for ``ServiceClientFactory``."""

    def __init__(self, **clients: Any) -> None:
        self.clients = clients
        self.session_requests: list[tuple[str, str]] = []
        self.invalidated: list[str] = []

    def get_client(self, service: str, for_context: str | None = None, region: str | None = None) -> Any:
        try:
            return self.clients[service]
        except KeyError:
            raise UnsupportedService(f"Unsupported service type: {service}") from None

    def get_client_for_session(self, service: str, session: RoleSession, region: str | None = None) -> Any:
        self.session_requests.append((service, session.role_arn))
        return self.get_client(service)

    def invalidate_session(self, arn: str) -> int:
        self.invalidated.append(arn)
        return 1


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Iterator[None]:
    _load_settings_cached.cache_clear()
    yield
    _load_settings_cached.cache_clear()


@pytest.fixture
def store() -> CredentialStore:
    credential_store = CredentialStore()
    credential_store.register(build_context("operator", profile="operator-profile"))
    credential_store.register(
        build_context(
            "agent",
            access_key_id="AKIAAGENTEXAMPLE",
            secret_access_key="agent-secret-value",
        )
    )
    return credential_store


@pytest.fixture
def agent_store(store: CredentialStore, monkeypatch: pytest.MonkeyPatch) -> CredentialStore:
    """Store with the agent active and STS identity lookups stubbed."""

    def _identity(name: str) -> ResolvedIdentity:
        return ResolvedIdentity(
            account_id=ACCOUNT_ID,
            principal_arn=f"arn:aws:iam::{ACCOUNT_ID}:user/{name}",
            user_id=f"AIDA{name.upper()}",
        )

    monkeypatch.setattr(store, "_caller_identity_sync", _identity)
    store.switch_context("agent")
    return store
