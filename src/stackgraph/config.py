"""Provisioning settings."""

from __future__ import annotations

import os
from typing import Any, Mapping

from pydantic import BaseModel, Field

ENV_PREFIX = "STACKGRAPH_"


class Settings(BaseModel):
    """
    Settings for one provisioning run.

    Resolved from, lowest precedence first: defaults, the ``settings`` block
    of the topology file, ``STACKGRAPH_*`` environment variables, and
    explicit overrides (CLI options).
    """

    max_workers: int = Field(default=4, ge=1)
    timeout_seconds: float | None = Field(default=None, gt=0)
    namespace: str = "stackgraph"
    publish_outputs: bool = True

    model_config = {"extra": "forbid"}

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> dict[str, Any]:
        """Collect overrides from environment variables."""
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for field in cls.model_fields:
            value = environ.get(ENV_PREFIX + field.upper())
            if value is not None:
                overrides[field] = value
        return overrides

    @classmethod
    def resolve(
        cls,
        file_settings: Mapping[str, Any] | None = None,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> Settings:
        """Merge every settings source into one validated object."""
        merged: dict[str, Any] = dict(file_settings or {})
        merged.update(cls.from_env(environ))
        merged.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**merged)
