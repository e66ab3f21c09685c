# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Variable context and step parameter resolution.

This module provides the StepContext handed to action handlers and the
ParameterResolver that substitutes workflow variables into step parameters.

Three reference syntaxes are supported in parameter text:

- ``{{ name }}`` and any other Jinja2 syntax, rendered strictly
- ``${name}``
- ``{name}`` (legacy single braces)
"""

from __future__ import annotations

import copy
import re
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from stepwise.engine.template import TemplateRenderer

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef

DOLLAR_REF_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
LEGACY_REF_PATTERN = re.compile(r"(?<![{$])\{([A-Za-z_][A-Za-z0-9_]*)\}(?!\})")

# Step fields whose text is resolved against the variable context
TEXT_PARAMETERS = (
    "prompt",
    "message",
    "content",
    "template",
    "output_file",
    "workflow_path",
    "status_file",
)

# Variables with this prefix are engine-internal and never inherited by children
INTERNAL_PREFIX = "_"


def freeze_variables(variables: Mapping[str, Any]) -> Mapping[str, Any]:
    """Return a read-only deep copy of a variable mapping."""
    return MappingProxyType(copy.deepcopy(dict(variables)))


def inheritable_variables(variables: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy of the variables a nested workflow inherits."""
    return {
        key: copy.deepcopy(value)
        for key, value in variables.items()
        if not key.startswith(INTERNAL_PREFIX)
    }


@dataclass(frozen=True)
class StepContext:
    """Everything a handler needs to execute one step.

    Handlers receive a read-only copy of the variables; the only way to
    change workflow state is the outcome they return.

    Attributes:
        instance_id: Workflow-instance id being advanced.
        workflow_name: Name of the workflow definition.
        step_index: Index of the step being executed.
        variables: Read-only copy of the variable bindings.
        params: Step parameters with variables substituted.
        deadline: Optional ``time.monotonic()`` deadline for the invocation.
        lineage: Workflow names from the root workflow to this one.
    """

    instance_id: str
    workflow_name: str
    step_index: int
    variables: Mapping[str, Any] = field(default_factory=dict)
    params: Mapping[str, Any] = field(default_factory=dict)
    deadline: float | None = None
    lineage: tuple[str, ...] = ()

    def param(self, name: str, default: Any = None) -> Any:
        """Return a resolved parameter, or ``default`` if absent."""
        value = self.params.get(name)
        return default if value is None else value

    def time_remaining(self) -> float | None:
        """Seconds left until the deadline, or None without a deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def depth(self) -> int:
        """Nesting depth of this workflow (0 for a root workflow)."""
        return max(0, len(self.lineage) - 1)


class ParameterResolver:
    """Substitutes workflow variables into step parameters.

    Example:
        >>> resolver = ParameterResolver()
        >>> resolver.resolve_text("Scale: {{ scale }} / {scale}", {"scale": "large"})
        'Scale: large / large'
    """

    def __init__(self, renderer: TemplateRenderer | None = None) -> None:
        self.renderer = renderer or TemplateRenderer()

    def resolve_text(self, text: str, variables: Mapping[str, Any]) -> str:
        """Resolve variable references in a string.

        ``${name}`` and ``{name}`` references to unbound variables are left
        as they are; Jinja2 references to unbound variables fail.

        Raises:
            TemplateError: If Jinja2 rendering fails.
        """

        def substitute(match: re.Match) -> str:
            name = match.group(1)
            if name in variables:
                return str(variables[name])
            return match.group(0)

        text = DOLLAR_REF_PATTERN.sub(substitute, text)
        text = LEGACY_REF_PATTERN.sub(substitute, text)
        if self.renderer.has_template_syntax(text):
            return self.renderer.render(text, dict(variables))
        return text

    def resolve_value(self, value: Any, variables: Mapping[str, Any]) -> Any:
        """Resolve strings inside a nested value; other values pass through."""
        if isinstance(value, str):
            return self.resolve_text(value, variables)
        if isinstance(value, dict):
            return {k: self.resolve_value(v, variables) for k, v in value.items()}
        if isinstance(value, list):
            return [self.resolve_value(item, variables) for item in value]
        return value

    def resolve(self, step: StepDef, variables: Mapping[str, Any]) -> dict[str, Any]:
        """Resolve all parameters of a step.

        Returns:
            Mapping of parameter name to resolved value. Unset parameters
            are omitted.

        Raises:
            TemplateError: If a parameter fails to render.
        """
        params: dict[str, Any] = {}
        for name in TEXT_PARAMETERS:
            value = getattr(step, name)
            if value is not None:
                params[name] = self.resolve_text(value, variables)

        if step.variable is not None:
            params["variable"] = step.variable
        if step.output_var is not None:
            params["output_var"] = step.output_var
        if step.variables:
            params["variables"] = self.resolve_value(step.variables, variables)
        if step.context_vars:
            params["context_vars"] = self.resolve_value(step.context_vars, variables)
        if step.condition is not None and step.action == "route":
            params["condition"] = self.resolve_text(step.condition, variables)
        return params
