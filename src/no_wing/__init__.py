"""Credential-context and permission-elevation broker for no-wing."""

__version__ = "0.3.0"
