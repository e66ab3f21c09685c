# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Cross-field validators for workflow definitions.

This module provides validation beyond Pydantic schema validation,
including nested workflow references and variable references in guard
conditions.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

from stepwise.exceptions import DefinitionError

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef, WorkflowDefinition
    from stepwise.config.sources import DefinitionSource


# ${VAR} and {{VAR}} references inside conditions
CONDITION_REF_PATTERN = re.compile(
    r"\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}|\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}"
)

# Variables bound by load_state_machine steps
STATE_MACHINE_VARIABLES = frozenset(
    {
        "state_machine",
        "todo_story_id",
        "todo_story_title",
        "todo_story_points",
        "in_progress_story_id",
        "in_progress_story_title",
        "in_progress_story_points",
    }
)


def validate_workflow_definition(
    definition: WorkflowDefinition,
    source: DefinitionSource | None = None,
) -> list[str]:
    """Perform semantic validation of a workflow definition.

    Args:
        definition: The WorkflowDefinition to validate.
        source: Optional definition source used to check that nested
            workflow references resolve.

    Returns:
        A list of warning messages (non-fatal issues).

    Raises:
        DefinitionError: If any validation errors are found.
    """
    errors: list[str] = []
    warnings: list[str] = []

    bound: set[str] = set(definition.variables)

    for index, step in enumerate(definition.steps):
        if step.condition and step.action != "route":
            warnings.extend(_check_condition_refs(index, step, bound))

        for reference in step.nested_references():
            if reference == definition.name:
                errors.append(
                    f"Step {index} ('{step.name}') invokes its own workflow '{reference}'"
                )
            elif source is not None:
                errors.extend(_check_reference(index, step, reference, source))

        bound.update(_variables_bound_by(step))

    if errors:
        raise DefinitionError(
            f"Workflow '{definition.name}' validation failed:\n  - " + "\n  - ".join(errors),
            suggestion="Fix the validation errors listed above and try again.",
        )

    return warnings


def _check_condition_refs(index: int, step: StepDef, bound: set[str]) -> list[str]:
    """Warn about condition variables no earlier step or default binds."""
    warnings = []
    for match in CONDITION_REF_PATTERN.finditer(step.condition or ""):
        name = match.group(1) or match.group(2)
        if name not in bound:
            warnings.append(
                f"Step {index} ('{step.name}') condition references '{name}', "
                "which is not bound by defaults or an earlier step"
            )
    return warnings


def _check_reference(
    index: int,
    step: StepDef,
    reference: str,
    source: DefinitionSource,
) -> list[str]:
    try:
        source.get(reference)
    except DefinitionError as e:
        return [f"Step {index} ('{step.name}') references '{reference}': {e.message}"]
    return []


def _variables_bound_by(step: StepDef) -> set[str]:
    names: set[str] = set()
    if step.variable:
        names.add(step.variable)
    if step.action == "route":
        names.add("routing_decision")
        if step.output_var:
            names.add(step.output_var)
    if step.action == "load_state_machine":
        names.update(STATE_MACHINE_VARIABLES)
    return names
