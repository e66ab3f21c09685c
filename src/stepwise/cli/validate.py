# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Implementation of the 'stepwise validate' and 'stepwise tree' commands.

This module provides functionality to validate workflow YAML files
without executing them, displaying detailed error information, and to
render the nested workflow hierarchy.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from stepwise.cli.run import hierarchy_tree
from stepwise.config.loader import load_definition
from stepwise.config.settings import EngineSettings
from stepwise.config.sources import DirectoryDefinitionSource
from stepwise.config.validator import validate_workflow_definition
from stepwise.engine.hierarchy import HierarchyNode, HierarchyResolver
from stepwise.exceptions import StepwiseError

if TYPE_CHECKING:
    from stepwise.config.schema import WorkflowDefinition


def validate_workflow(
    workflow_path: Path,
    console: Console | None = None,
    workflows_dir: Path | None = None,
) -> tuple[bool, WorkflowDefinition | None, list[str]]:
    """Validate a workflow YAML file.

    Attempts to load the definition, then checks nested references and
    condition variables, reporting any errors encountered.

    Args:
        workflow_path: Path to the workflow YAML file.
        console: Optional Rich console for output.
        workflows_dir: Directory nested references resolve against.

    Returns:
        A tuple of (is_valid, definition_or_none, warnings).
    """
    output_console = console if console is not None else Console()

    try:
        definition = load_definition(workflow_path)
        source = DirectoryDefinitionSource(workflows_dir or workflow_path.parent)
        warnings = validate_workflow_definition(definition, source)
        return True, definition, warnings
    except StepwiseError as e:
        display_validation_error(e, workflow_path, output_console)
        return False, None, []
    except Exception as e:
        output_console.print(
            Panel(
                f"[bold red]Unexpected Error[/bold red]\n\n{e}",
                title="[red]Validation Failed[/red]",
                border_style="red",
            )
        )
        return False, None, []


def display_validation_error(
    error: StepwiseError,
    workflow_path: Path,
    console: Console,
) -> None:
    """Display a validation error with Rich formatting."""
    content = f"[bold red]{error.error_type}[/bold red]\n\n"
    content += f"[dim]File:[/dim] {workflow_path}\n\n"
    content += error.message

    field_path = getattr(error, "field_path", None)
    if field_path:
        content += f"\n\n[dim]Field:[/dim] {field_path}"

    if error.suggestion:
        content += f"\n\n[yellow]💡 Suggestion:[/yellow] {error.suggestion}"

    console.print(
        Panel(
            content,
            title="[red]Validation Failed[/red]",
            border_style="red",
        )
    )


def display_validation_success(
    definition: WorkflowDefinition,
    workflow_path: Path,
    warnings: list[str],
    console: Console,
) -> None:
    """Display validation success with a workflow summary."""
    elicit_count = sum(1 for step in definition.steps if step.action == "elicit")
    nested_count = sum(1 for step in definition.steps if step.is_nested)
    guarded_count = sum(
        1 for step in definition.steps if step.condition and step.action != "route"
    )

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")

    table.add_row("Name", definition.name)
    if definition.description:
        table.add_row("Description", definition.description)
    if definition.agent:
        table.add_row("Agent", definition.agent)
    if definition.phase is not None:
        table.add_row("Phase", str(definition.phase))
    table.add_row("Steps", str(definition.step_count))
    if elicit_count:
        table.add_row("Input steps", str(elicit_count))
    if nested_count:
        table.add_row("Nested steps", str(nested_count))
    if guarded_count:
        table.add_row("Conditional steps", str(guarded_count))

    console.print(
        Panel(
            table,
            title="[green]Validation Successful[/green]",
            border_style="green",
        )
    )

    if definition.steps:
        step_table = Table(title="Steps", show_lines=True)
        step_table.add_column("#", justify="right", style="dim")
        step_table.add_column("Name", style="cyan")
        step_table.add_column("Action", width=18)
        step_table.add_column("Details")

        for index, step in enumerate(definition.steps):
            details = []
            if step.variable:
                details.append(f"→ {step.variable}")
            if step.nested_references():
                details.append(", ".join(step.nested_references()))
            if step.condition:
                details.append(f"[dim]if {step.condition}[/dim]")
            step_table.add_row(str(index), step.name, step.action, " ".join(details))

        console.print(step_table)

    for warning in warnings:
        console.print(f"[yellow]⚠ {warning}[/yellow]")


def build_hierarchy(
    workflow_path: Path,
    workflows_dir: Path | None = None,
    max_depth: int | None = None,
) -> HierarchyNode:
    """Load a workflow and expand its nested workflow tree.

    Raises:
        DefinitionError: If a definition cannot be loaded.
        CycleError: If nested references form a cycle.
    """
    definition = load_definition(workflow_path)
    settings = EngineSettings.from_env()
    source = DirectoryDefinitionSource(workflows_dir or workflow_path.parent)
    resolver = HierarchyResolver(source, max_depth=settings.max_hierarchy_depth)
    return resolver.resolve(definition, max_depth=max_depth)


def display_hierarchy(hierarchy: HierarchyNode, console: Console) -> None:
    """Print a hierarchy tree with a total step count."""
    workflow_count = sum(1 for _ in hierarchy.walk())
    console.print(hierarchy_tree(hierarchy))
    console.print(f"[dim]{hierarchy.total_steps} steps across {workflow_count} workflows[/dim]")
