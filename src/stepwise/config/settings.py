# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Engine settings resolved from the environment.

Every setting can be overridden with a ``STEPWISE_<FIELD>`` environment
variable, e.g. ``STEPWISE_STATE_DIR=/var/lib/stepwise``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from stepwise.exceptions import DefinitionError

ENV_PREFIX = "STEPWISE_"


class EngineSettings(BaseModel):
    """Runtime settings for the execution engine."""

    state_dir: Path = Path(".stepwise") / "workflow-states"
    """Directory holding one state document per workflow instance."""

    workflows_dir: Path = Path("workflows")
    """Base directory for resolving nested workflow references."""

    templates_dir: Path = Path("templates")
    """Base directory for template files used by template steps."""

    output_dir: Path = Path(".")
    """Base directory for relative template output files."""

    max_hierarchy_depth: int = Field(default=10, ge=1, le=100)
    """Maximum nesting depth expanded by the hierarchy resolver."""

    max_steps_per_run: int = Field(default=1000, ge=1)
    """Safety cap on steps advanced by one background run."""

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides: object) -> EngineSettings:
        """Build settings from ``STEPWISE_*`` environment variables.

        Args:
            environ: Environment mapping. Defaults to ``os.environ``.
            **overrides: Explicit values taking precedence over the environment.

        Raises:
            DefinitionError: If an environment value has the wrong type.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for name in cls.model_fields:
            raw = env.get(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise DefinitionError(
                f"Invalid engine settings: {e}",
                suggestion=f"Check the {ENV_PREFIX}* environment variables",
            ) from e
