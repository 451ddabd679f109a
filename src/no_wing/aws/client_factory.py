"""AWS service client factory bound to the credential store."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import boto3
from botocore.config import Config

from no_wing.errors import UnsupportedService
from no_wing.utils.hashing import fingerprint

if TYPE_CHECKING:
    from no_wing.credentials.store import CredentialStore
    from no_wing.roles.models import RoleSession

logger = logging.getLogger(__name__)

SUPPORTED_SERVICES = frozenset(
    {"iam", "sts", "s3", "lambda", "cloudformation", "logs", "cloudtrail"}
)

ClientCacheKey = tuple[str, ...]


@dataclass
class _CachedClient:
    client: Any
    credential_fingerprint: str


class ServiceClientFactory:
    """Builds and caches boto3 clients per ``(service, context)``.

    A cached client is reused only while the backing credentials are
    unchanged; otherwise it is rebuilt, never mutated. The factory performs
    no network calls and no retries of its own.
    """

    def __init__(
        self,
        store: "CredentialStore",
        default_region: str = "us-east-1",
        sdk_timeout_seconds: int = 30,
        max_retries: int = 3,
    ) -> None:
        self._store = store
        self._default_region = default_region
        self._sdk_timeout_seconds = sdk_timeout_seconds
        self._max_retries = max_retries
        self._cache: dict[ClientCacheKey, _CachedClient] = {}
        self._lock = threading.Lock()
        store.add_switch_listener(self._on_context_switch)

    def _on_context_switch(self, previous: str | None, current: str) -> None:
        # ``previous == current`` when an active context is re-registered.
        if previous is not None:
            self.invalidate_context(previous)

    def get_client(
        self,
        service: str,
        for_context: str | None = None,
        region: str | None = None,
    ) -> Any:
        """Return a client for the named context (the active one by default)."""
        service = _check_service(service)
        context = (
            self._store.get_context(for_context)
            if for_context
            else self._store.require_active_context()
        )
        region = region or context.source.region or self._default_region
        key: ClientCacheKey = ("context", service, context.name, region)

        current = self._store.credential_fingerprint(context.name)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.credential_fingerprint == current:
                return cached.client

        session = self._store.create_session(context.name)
        # Creating the session may have refreshed an assumed-session source.
        current = self._store.credential_fingerprint(context.name)
        client = session.client(service, region_name=region, config=self._service_config(service))
        with self._lock:
            self._cache[key] = _CachedClient(client=client, credential_fingerprint=current)
        logger.debug("Built %s client for context %s (%s)", service, context.name, region)
        return client

    def get_client_for_session(
        self,
        service: str,
        session: "RoleSession",
        region: str | None = None,
    ) -> Any:
        """Return a client that acts under an assumed-role session."""
        service = _check_service(service)
        region = region or self._default_region
        creds = session.credentials
        current = fingerprint(creds.access_key_id, creds.secret_access_key, creds.session_token)
        key: ClientCacheKey = ("session", service, session.role_arn, region)
        return self._get_or_build(
            key,
            current,
            lambda: self._build_from_keys(
                service,
                region,
                creds.access_key_id,
                creds.secret_access_key,
                creds.session_token,
            ),
        )

    def _get_or_build(
        self,
        key: ClientCacheKey,
        current_fingerprint: str,
        build_client: Callable[[], Any],
    ) -> Any:
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None and cached.credential_fingerprint == current_fingerprint:
                return cached.client
            client = build_client()
            self._cache[key] = _CachedClient(
                client=client, credential_fingerprint=current_fingerprint
            )
            return client

    def _build_from_keys(
        self,
        service: str,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        session_token: str | None,
    ) -> Any:
        session = boto3.Session(
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            aws_session_token=session_token,
            region_name=region,
        )
        return session.client(service, region_name=region, config=self._service_config(service))

    def _service_config(self, service: str) -> Config:
        base: dict[str, object] = {
            "read_timeout": self._sdk_timeout_seconds,
            "connect_timeout": self._sdk_timeout_seconds,
            "retries": {"max_attempts": self._max_retries, "mode": "standard"},
        }
        if service == "s3":
            base["request_checksum_calculation"] = "when_required"
            base["response_checksum_validation"] = "when_required"
        return Config(**base)

    def invalidate_context(self, name: str) -> int:
        with self._lock:
            stale = [key for key in self._cache if key[0] == "context" and key[2] == name]
            for key in stale:
                del self._cache[key]
        if stale:
            logger.debug("Dropped %d cached clients for context %s", len(stale), name)
        return len(stale)

    def invalidate_session(self, role_arn: str) -> int:
        with self._lock:
            stale = [key for key in self._cache if key[0] == "session" and key[2] == role_arn]
            for key in stale:
                del self._cache[key]
        return len(stale)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()
        logger.info("AWS client cache cleared")

    def cache_stats(self) -> dict[str, object]:
        with self._lock:
            keys = [":".join(key) for key in self._cache]
        return {"size": len(keys), "keys": keys}


def _check_service(service: str) -> str:
    normalized = service.strip().lower()
    if normalized not in SUPPORTED_SERVICES:
        raise UnsupportedService(f"Unsupported service type: {service}")
    return normalized


def _call_method(client: Any, method_name: str, kwargs: dict[str, object]) -> dict[str, object]:
    method = getattr(client, method_name)
    response = method(**kwargs)
    if isinstance(response, dict):
        response.pop("ResponseMetadata", None)
        return response
    return {"result": response}


async def call_aws_api_async(client: Any, method_name: str, **kwargs: object) -> dict[str, object]:
    return await asyncio.to_thread(_call_method, client, method_name, kwargs)
