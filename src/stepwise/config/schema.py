# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Pydantic models for workflow definitions.

This module defines the Pydantic models for validating and parsing
workflow definition files. Definitions are immutable once loaded.
"""

from __future__ import annotations

import re
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

ActionKind = Literal[
    "display",
    "elicit",
    "reflect",
    "template",
    "workflow",
    "sub-workflow",
    "route",
    "load_state_machine",
]
"""Closed set of step action kinds."""

ACTION_KINDS: tuple[str, ...] = get_args(ActionKind)

NESTED_ACTIONS = frozenset({"workflow", "sub-workflow"})
"""Actions that invoke exactly one nested workflow."""

# Accepted at load time and normalized to their canonical kind
ACTION_ALIASES = {"render_template": "template"}

VARIABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class RoutingPath(BaseModel):
    """Workflows executed for one routing level."""

    model_config = ConfigDict(frozen=True)

    workflows: list[str] = Field(default_factory=list)
    """Workflow references executed in order."""

    description: str | None = None
    """Human-readable description of this path."""


class RoutingTable(BaseModel):
    """Routing table of a route step, keyed by complexity level.

    Example:
        ```yaml
        routing:
          level_0: [quick-fix.workflow.yaml]
          level_2:
            workflows: [prd.workflow.yaml, architecture.workflow.yaml]
          default: [standard.workflow.yaml]
        ```
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    description: str | None = None
    level_0: list[str] | RoutingPath | None = None
    level_1: list[str] | RoutingPath | None = None
    level_2: list[str] | RoutingPath | None = None
    level_3: list[str] | RoutingPath | None = None
    level_4: list[str] | RoutingPath | None = None
    default: list[str] | RoutingPath | None = None

    @model_validator(mode="after")
    def validate_has_targets(self) -> RoutingTable:
        """Ensure at least one level or the default is configured."""
        levels = [getattr(self, f"level_{n}") for n in range(5)]
        if all(entry is None for entry in levels) and self.default is None:
            raise ValueError("routing table must define at least one level_N or default")
        return self

    @staticmethod
    def _normalize(entry: list[str] | RoutingPath | None) -> list[str] | None:
        if entry is None:
            return None
        if isinstance(entry, RoutingPath):
            return list(entry.workflows)
        return list(entry)

    def targets_for(self, level: int) -> list[str] | None:
        """Return the workflows for a level, falling back to the default.

        Args:
            level: Complexity level between 0 and 4.

        Returns:
            Ordered workflow references, or None if neither the level nor a
            default is configured.
        """
        entry = getattr(self, f"level_{level}", None) if 0 <= level <= 4 else None
        targets = self._normalize(entry)
        if targets is None:
            targets = self._normalize(self.default)
        return targets

    def all_targets(self) -> list[str]:
        """Return every distinct workflow reference in table order."""
        seen: list[str] = []
        entries = [getattr(self, f"level_{n}") for n in range(5)] + [self.default]
        for entry in entries:
            for target in self._normalize(entry) or []:
                if target not in seen:
                    seen.append(target)
        return seen


class StepDef(BaseModel):
    """Definition of a single workflow step.

    Which parameters are required depends on the action kind:

    - display: message
    - elicit: prompt, variable
    - reflect: prompt
    - template: template
    - workflow / sub-workflow: workflow_path
    - route: routing, condition
    - load_state_machine: status_file
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    """Step name, unique within a workflow."""

    action: ActionKind
    """Action kind dispatched to the handler registry."""

    prompt: str | None = None
    """Prompt text for elicit and reflect steps."""

    message: str | None = None
    """Message text for display steps."""

    content: str | None = None
    """Free-form content shown alongside the step."""

    variable: str | None = None
    """Target variable bound by the step's outcome."""

    template: str | None = None
    """Template reference for template steps."""

    output_file: str | None = None
    """Output path for template steps. Variables are substituted."""

    variables: dict[str, Any] = Field(default_factory=dict)
    """Extra variables passed to template rendering."""

    workflow_path: str | None = None
    """Nested workflow reference for workflow and sub-workflow steps."""

    context_vars: dict[str, Any] = Field(default_factory=dict)
    """Variables passed to a nested workflow, overriding inherited ones."""

    routing: RoutingTable | None = None
    """Routing table for route steps."""

    output_var: str | None = None
    """Variable receiving the routing result of a route step."""

    status_file: str | None = None
    """Status file path for load_state_machine steps."""

    condition: str | None = None
    """Guard condition. For route steps, the complexity-level expression."""

    @model_validator(mode="before")
    @classmethod
    def normalize_legacy_fields(cls, data: Any) -> Any:
        """Map legacy action names and fields onto their canonical form."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        action = data.get("action")
        if isinstance(action, str) and action in ACTION_ALIASES:
            data["action"] = ACTION_ALIASES[action]
        legacy_path = data.pop("subworkflow", None)
        if legacy_path and not data.get("workflow_path"):
            data["workflow_path"] = legacy_path
        return data

    @field_validator("variable", "output_var")
    @classmethod
    def validate_variable_name(cls, v: str | None) -> str | None:
        """Ensure bound variable names are identifiers."""
        if v is not None and not VARIABLE_NAME_PATTERN.match(v):
            raise ValueError(f"variable name '{v}' must be a valid identifier")
        return v

    @model_validator(mode="after")
    def validate_action_parameters(self) -> StepDef:
        """Ensure the parameters required by the action kind are present."""
        required: dict[str, tuple[str, ...]] = {
            "display": ("message",),
            "elicit": ("prompt", "variable"),
            "reflect": ("prompt",),
            "template": ("template",),
            "workflow": ("workflow_path",),
            "sub-workflow": ("workflow_path",),
            "route": ("routing", "condition"),
            "load_state_machine": ("status_file",),
        }
        missing = [f for f in required[self.action] if getattr(self, f) in (None, "")]
        if missing:
            raise ValueError(
                f"{self.action} step '{self.name}' requires {', '.join(missing)}"
            )
        return self

    @property
    def is_nested(self) -> bool:
        """True if this step invokes one or more nested workflows."""
        return self.action in NESTED_ACTIONS or self.action == "route"

    def nested_references(self) -> list[str]:
        """Return every workflow reference this step may invoke."""
        if self.action in NESTED_ACTIONS and self.workflow_path:
            return [self.workflow_path]
        if self.action == "route" and self.routing is not None:
            return self.routing.all_targets()
        return []


class WorkflowDefinition(BaseModel):
    """An ordered list of typed steps plus default variables."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    """Workflow name."""

    description: str = ""
    """Human-readable description of the workflow."""

    agent: str | None = None
    """Reference to the owning agent."""

    phase: int | None = None
    """Ordering/phase number."""

    steps: list[StepDef] = Field(default_factory=list)
    """Ordered steps executed by the step executor."""

    variables: dict[str, Any] = Field(default_factory=dict)
    """Default variable bindings for new instances."""

    @field_validator("steps")
    @classmethod
    def validate_unique_step_names(cls, v: list[StepDef]) -> list[StepDef]:
        """Ensure step names are unique."""
        seen: set[str] = set()
        duplicates = []
        for step in v:
            if step.name in seen:
                duplicates.append(step.name)
            seen.add(step.name)
        if duplicates:
            raise ValueError(f"duplicate step names: {', '.join(duplicates)}")
        return v

    @property
    def step_count(self) -> int:
        """Number of steps in the workflow."""
        return len(self.steps)


class WorkflowFile(BaseModel):
    """Top-level structure of a workflow definition file."""

    workflow: WorkflowDefinition
