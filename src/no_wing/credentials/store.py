"""Credential store: named contexts and the single active-context pointer."""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from no_wing.credentials.models import (
    CredentialContext,
    CredentialSource,
    ResolvedIdentity,
    TemporaryCredentials,
)
from no_wing.errors import (
    CLIENT_ERROR_CODES,
    CredentialInvalid,
    UnknownContext,
    client_error_code,
)
from no_wing.utils.hashing import fingerprint
from no_wing.utils.time import epoch_millis, utc_now

logger = logging.getLogger(__name__)

SwitchListener = Callable[[str | None, str], None]


class CredentialStore:
    """Holds credential contexts and tracks which one is active.

    Switching is the only way the active context changes; there is no
    implicit fallback between contexts. Listeners registered with
    ``add_switch_listener`` are told about every switch so that caches
    tied to the previous context can be dropped.
    """

    def __init__(
        self,
        region: str = "us-east-1",
        sts_region: str = "us-east-1",
        refresh_buffer_seconds: int = 300,
        sdk_timeout_seconds: int = 30,
    ) -> None:
        self._region = region
        self._sts_region = sts_region
        self._refresh_buffer_seconds = refresh_buffer_seconds
        self._sts_config = Config(
            connect_timeout=sdk_timeout_seconds,
            read_timeout=sdk_timeout_seconds,
            retries={"max_attempts": 2},
        )
        self._contexts: dict[str, CredentialContext] = {}
        self._active: str | None = None
        self._listeners: list[SwitchListener] = []
        self._assumed: dict[str, TemporaryCredentials] = {}
        self._lock = threading.Lock()

    def register(self, context: CredentialContext) -> None:
        """Add or replace a context. Replacing drops any resolved state."""
        with self._lock:
            replaced = context.name in self._contexts
            self._contexts[context.name] = context
            self._assumed.pop(context.name, None)
        if replaced:
            logger.info("Credential context reconfigured: %s", context.name)
            if self._active == context.name:
                self._notify(context.name, context.name)
        else:
            logger.debug("Credential context registered: %s", context.name)

    def list_contexts(self) -> list[CredentialContext]:
        return list(self._contexts.values())

    def get_context(self, name: str) -> CredentialContext:
        try:
            return self._contexts[name]
        except KeyError:
            raise UnknownContext(name) from None

    def add_switch_listener(self, listener: SwitchListener) -> None:
        self._listeners.append(listener)

    @property
    def active_name(self) -> str | None:
        return self._active

    def get_active_context(self) -> CredentialContext | None:
        if self._active is None:
            return None
        return self._contexts.get(self._active)

    def require_active_context(self) -> CredentialContext:
        context = self.get_active_context()
        if context is None:
            raise CredentialInvalid("No credential context is active", code="no_active_context")
        return context

    def switch_context(self, name: str) -> CredentialContext:
        context = self.get_context(name)
        previous = self._active
        self._active = name
        logger.info("Switched credential context: %s -> %s", previous, name)
        self._notify(previous, name)
        return context

    def _notify(self, previous: str | None, current: str) -> None:
        for listener in list(self._listeners):
            listener(previous, current)

    def create_session(self, name: str | None = None) -> boto3.Session:
        """Build a boto3 session for a context (the active one by default).

        Blocking: an ``assumed-session`` source may call STS.
        """
        context = self.get_context(name) if name else self.require_active_context()
        source = context.source
        region = source.region or self._region
        try:
            if source.kind == "static":
                return boto3.Session(
                    aws_access_key_id=source.access_key_id,
                    aws_secret_access_key=source.secret_access_key,
                    aws_session_token=source.session_token,
                    region_name=region,
                )
            if source.kind == "profile":
                return boto3.Session(profile_name=source.profile, region_name=region)
            creds = self._assumed_credentials(context)
            return boto3.Session(
                aws_access_key_id=creds.access_key_id,
                aws_secret_access_key=creds.secret_access_key,
                aws_session_token=creds.session_token,
                region_name=region,
            )
        except BotoCoreError as exc:
            raise CredentialInvalid(
                f"Cannot build session for context {context.name!r}: {exc}",
                code="session_error",
            ) from exc

    def credential_fingerprint(self, name: str | None = None) -> str:
        """Digest of the context's current credential material."""
        context = self.get_context(name) if name else self.require_active_context()
        source = context.source
        if source.kind == "static":
            return fingerprint(
                "static", source.access_key_id, source.secret_access_key, source.session_token
            )
        if source.kind == "profile":
            return fingerprint("profile", source.profile, source.region)
        creds = self._assumed.get(context.name)
        if creds is None:
            return fingerprint("assumed-session", source.role_arn, "pending")
        if creds.is_expiring_soon(self._refresh_buffer_seconds):
            # Never matches a cached client, so the next build refreshes.
            return fingerprint("assumed-session", source.role_arn, "expiring")
        return fingerprint(
            "assumed-session", creds.access_key_id, creds.secret_access_key, creds.session_token
        )

    def _assumed_credentials(self, context: CredentialContext) -> TemporaryCredentials:
        with self._lock:
            cached = self._assumed.get(context.name)
            if cached and not cached.is_expiring_soon(self._refresh_buffer_seconds):
                return cached

        source = context.source
        base = boto3.Session(profile_name=source.source_profile)
        sts = base.client("sts", region_name=self._sts_region, config=self._sts_config)
        session_name = f"no-wing-{context.name}-{epoch_millis()}"
        try:
            response = sts.assume_role(
                RoleArn=source.role_arn,
                RoleSessionName=session_name,
                DurationSeconds=3600,
            )
        except ClientError as exc:
            code, message = client_error_code(exc)
            raise CredentialInvalid(
                f"Assuming {source.role_arn} for context {context.name!r} failed: {message}",
                code=CLIENT_ERROR_CODES.get(code, "sts_error"),
            ) from exc

        raw = response["Credentials"]
        creds = TemporaryCredentials(
            access_key_id=raw["AccessKeyId"],
            secret_access_key=raw["SecretAccessKey"],
            session_token=raw["SessionToken"],
            expiration=raw["Expiration"],
        )
        with self._lock:
            self._assumed[context.name] = creds
        logger.info("Context %s assumed %s (session=%s)", context.name, source.role_arn, session_name)
        return creds

    async def validate(self, name: str) -> ResolvedIdentity:
        """Resolve the caller identity of a context, raising ``CredentialInvalid``."""
        context = self.get_context(name)
        identity = await asyncio.to_thread(self._caller_identity_sync, context.name)
        context.identity = identity
        context.validated_at = utc_now()
        logger.info("Validated context %s as %s", name, identity.principal_arn)
        return identity

    def _caller_identity_sync(self, name: str) -> ResolvedIdentity:
        session = self.create_session(name)
        try:
            client: Any = session.client(
                "sts", region_name=self._sts_region, config=self._sts_config
            )
            response = client.get_caller_identity()
        except ClientError as exc:
            code, message = client_error_code(exc)
            logger.warning("Credential validation failed for %s: %s: %s", name, code, message)
            raise CredentialInvalid(
                f"Credentials for context {name!r} are not usable: {message}",
                code=CLIENT_ERROR_CODES.get(code, "sts_error"),
            ) from exc
        except BotoCoreError as exc:
            logger.warning("Credential validation failed for %s: %s", name, exc)
            raise CredentialInvalid(
                f"Credentials for context {name!r} are not usable: {exc}",
                code="no_credentials",
            ) from exc

        return ResolvedIdentity(
            account_id=response["Account"],
            principal_arn=response["Arn"],
            user_id=response.get("UserId", ""),
        )


def build_context(name: str, **source: Any) -> CredentialContext:
    """Convenience constructor used by setup code and tests."""
    return CredentialContext(name=name, source=CredentialSource(**source))
