"""Loader for the context definition file (``.no-wing/config.yaml``)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from no_wing.credentials.models import CredentialContext, CredentialSource


class ContextConfig(BaseModel):
    default_context: str | None = Field(default=None)
    contexts: dict[str, CredentialSource] = Field(default_factory=dict)

    @field_validator("contexts", mode="before")
    @classmethod
    def _validate_contexts(cls, v: Any) -> dict:
        if v is None:
            return {}
        if isinstance(v, dict):
            # ``agent: {}`` and ``agent:`` both mean "default credential chain".
            return {name: (source or {}) for name, source in v.items()}
        return v

    @model_validator(mode="after")
    def _check_default(self) -> "ContextConfig":
        if self.default_context is not None and self.default_context not in self.contexts:
            raise ValueError(
                f"default_context {self.default_context!r} is not one of the defined contexts"
            )
        return self

    def build_contexts(self) -> list[CredentialContext]:
        return [
            CredentialContext(name=name, source=source)
            for name, source in self.contexts.items()
        ]

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "ContextConfig":
        return cls.model_validate(data)


def load_contexts(path: str) -> ContextConfig:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Context configuration not found: {config_path}")
    with config_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return ContextConfig.from_yaml(data)
