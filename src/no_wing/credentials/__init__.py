"""Credential contexts and the active-context store."""

from no_wing.credentials.loader import ContextConfig, load_contexts
from no_wing.credentials.models import (
    CredentialContext,
    CredentialSource,
    ResolvedIdentity,
    TemporaryCredentials,
)
from no_wing.credentials.store import CredentialStore, build_context

__all__ = [
    "ContextConfig",
    "CredentialContext",
    "CredentialSource",
    "CredentialStore",
    "ResolvedIdentity",
    "TemporaryCredentials",
    "build_context",
    "load_contexts",
]
