# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Implementation of the 'stepwise run', 'input' and 'status' commands.

This module provides helper functions for building the engine runtime from
CLI options, driving an instance in the foreground, prompting for elicit
input, and rendering results.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.tree import Tree

from stepwise.config.loader import load_definition
from stepwise.config.schema import WorkflowDefinition
from stepwise.config.settings import EngineSettings
from stepwise.config.sources import DirectoryDefinitionSource
from stepwise.engine.executor import StepExecutor
from stepwise.engine.hierarchy import HierarchyNode
from stepwise.engine.results import ExecutionResult
from stepwise.engine.state import ExecutionState, ExecutionStatus, WaitingMarker
from stepwise.engine.store import FileStateStore
from stepwise.engine.worker import WorkflowRunner
from stepwise.exceptions import NotFoundError
from stepwise.handlers.registry import ActionHandlerRegistry, create_default_registry

# Verbose console for logging (stderr)
_verbose_console = Console(stderr=True, highlight=False)

STATUS_STYLES = {
    ExecutionStatus.RUNNING: "cyan",
    ExecutionStatus.WAITING_FOR_INPUT: "yellow",
    ExecutionStatus.PAUSED: "yellow",
    ExecutionStatus.COMPLETED: "green",
    ExecutionStatus.FAILED: "red",
}


def verbose_log(message: str, style: str = "dim") -> None:
    """Log a message if verbose mode is enabled.

    Args:
        message: The message to log.
        style: Rich style for the message.
    """
    from stepwise.cli.app import is_verbose

    if is_verbose():
        _verbose_console.print(f"[{style}]{message}[/{style}]")


def verbose_log_step(result: ExecutionResult) -> None:
    """Log the outcome of one executor call."""
    from rich.text import Text

    from stepwise.cli.app import is_verbose

    if not is_verbose() or result.step_name is None:
        return

    style = STATUS_STYLES.get(result.status, "dim")
    marker = "✗" if not result.success else "⏸" if result.blocked and not result.completed else "✓"
    text = Text()
    text.append(f"{marker} ", style=style)
    text.append(result.step_name, style=f"{style} bold")
    if result.message:
        text.append(f"  {result.message}", style="dim")
    _verbose_console.print(text)


def verbose_log_section(title: str, content: str, truncate: bool = True) -> None:
    """Log a section with title if verbose mode is enabled.

    Args:
        title: Section title.
        content: Section content.
        truncate: If True, truncate content to 500 chars unless full mode is enabled.
    """
    from stepwise.cli.app import is_full, is_verbose

    if is_verbose():
        display_content = content
        if truncate and not is_full() and len(content) > 500:
            display_content = content[:500] + "\n... [truncated, use --verbose for full]"

        _verbose_console.print(
            Panel(display_content, title=f"[cyan]{title}[/cyan]", border_style="dim")
        )


def verbose_log_timing(operation: str, elapsed: float) -> None:
    """Log timing information if verbose mode is enabled."""
    from stepwise.cli.app import is_verbose

    if is_verbose():
        _verbose_console.print(f"[dim]⏱ {operation}: {elapsed:.2f}s[/dim]")


def parse_input_flags(raw_inputs: list[str]) -> dict[str, Any]:
    """Parse name=value flags into a dictionary.

    Supports type coercion for common types:
    - "true"/"false" -> bool
    - numeric strings -> int/float
    - JSON arrays/objects -> parsed JSON
    - everything else -> string

    Raises:
        typer.BadParameter: If input format is invalid.
    """
    inputs: dict[str, Any] = {}

    for raw in raw_inputs:
        if "=" not in raw:
            raise typer.BadParameter(f"Invalid input format: '{raw}'. Expected format: name=value")

        name, value = raw.split("=", 1)
        name = name.strip()

        if not name:
            raise typer.BadParameter(f"Empty input name in: '{raw}'")

        inputs[name] = coerce_value(value.strip())

    return inputs


def coerce_value(value: str) -> Any:
    """Coerce a string value to an appropriate Python type.

    Returns:
        The coerced value (bool, None, int, float, list, dict, or str).
    """
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False

    if value.lower() == "null":
        return None

    if value.startswith(("[", "{")):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass

    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        pass

    return value


@dataclass
class Runtime:
    """Engine collaborators built from CLI options."""

    definition: WorkflowDefinition
    settings: EngineSettings
    store: FileStateStore
    source: DirectoryDefinitionSource
    registry: ActionHandlerRegistry

    def executor(
        self,
        instance_id: str,
        create: bool = True,
        variables: dict[str, Any] | None = None,
    ) -> StepExecutor:
        """Return an executor initialized for an instance.

        Raises:
            NotFoundError: If ``create`` is False and the instance does not exist.
        """
        if not create and self.store.read(instance_id) is None:
            raise NotFoundError(
                f"No execution state for instance '{instance_id}'",
                instance_id=instance_id,
            )
        executor = StepExecutor(
            self.store,
            self.registry,
            source=self.source,
            max_hierarchy_depth=self.settings.max_hierarchy_depth,
        )
        executor.initialize(self.definition, instance_id, variables)
        return executor


def _display(message: str) -> None:
    _verbose_console.print(Panel(message, border_style="cyan"))


def build_runtime(
    workflow_path: Path,
    state_dir: Path | None = None,
    workflows_dir: Path | None = None,
) -> Runtime:
    """Load a workflow and wire up the store, source and handlers.

    Raises:
        DefinitionError: If the workflow or the settings are invalid.
    """
    load_start = time.time()
    definition = load_definition(workflow_path)
    verbose_log_timing("Workflow loaded", time.time() - load_start)

    settings = EngineSettings.from_env(state_dir=state_dir)
    source = DirectoryDefinitionSource(workflows_dir or workflow_path.parent)
    store = FileStateStore(settings.state_dir)
    registry = create_default_registry(
        settings=settings,
        source=source,
        store=store,
        display_sink=_display,
    )
    verbose_log(f"Workflow: {definition.name} ({definition.step_count} steps)")
    verbose_log(f"State directory: {settings.state_dir}")
    return Runtime(
        definition=definition,
        settings=settings,
        store=store,
        source=source,
        registry=registry,
    )


def prompt_for_input(marker: WaitingMarker, console: Console | None = None) -> Any:
    """Ask the user for the value an instance is waiting on."""
    prompt_console = console if console is not None else _verbose_console
    prompt_console.print()
    prompt_console.print(
        Panel(
            marker.prompt or f"Enter a value for '{marker.variable}'",
            title=f"[bold yellow]Input required: {marker.variable}[/bold yellow]",
            border_style="yellow",
        )
    )
    answer = Prompt.ask(f"[bold]{marker.variable}[/bold]", console=prompt_console)
    return coerce_value(answer)


async def drive(runtime: Runtime, executor: StepExecutor, interactive: bool) -> ExecutionResult:
    """Run an instance until it completes, fails, pauses or needs input.

    In interactive mode, input requests are answered at the terminal and
    the run continues.
    """
    while True:
        runner = WorkflowRunner(executor, max_steps=runtime.settings.max_steps_per_run)
        result = await runner.run()
        verbose_log_step(result)

        if not (interactive and result.waiting and result.state and result.state.waiting):
            return result

        marker = result.state.waiting
        value = prompt_for_input(marker)
        executor.submit_input(marker.step_index, value)


async def run_workflow_async(
    runtime: Runtime,
    instance_id: str,
    inputs: dict[str, Any],
    interactive: bool = True,
) -> ExecutionResult:
    """Create or continue an instance and run it in the foreground."""
    start_time = time.time()

    if inputs:
        verbose_log_section("Workflow Inputs", json.dumps(inputs, indent=2))

    executor = runtime.executor(instance_id, variables=inputs)
    state = executor.get_state()
    verbose_log(f"Instance {instance_id} at step {state.current_step_index}/{runtime.definition.step_count}")

    result = await drive(runtime, executor, interactive)
    verbose_log_timing("Run", time.time() - start_time)
    return result


async def submit_and_continue(
    runtime: Runtime,
    instance_id: str,
    step_index: int,
    value: Any,
) -> ExecutionResult:
    """Submit input for a waiting instance, then run it until it blocks again."""
    executor = runtime.executor(instance_id, create=False)
    executor.submit_input(step_index, value)
    verbose_log(f"Input accepted for step {step_index}", style="green")
    return await drive(runtime, executor, interactive=False)


def print_result(result: ExecutionResult, console: Console) -> None:
    """Print an execution result summary."""
    style = STATUS_STYLES.get(result.status, "white")
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{result.status.value}[/{style}]")
    if result.step_name:
        table.add_row("Step", result.step_name)
    if result.message:
        table.add_row("Message", result.message)

    state = result.state
    if state is not None:
        table.add_row("Instance", state.instance_id)
        table.add_row("Position", str(state.current_step_index))
        if state.waiting is not None:
            table.add_row(
                "Waiting for",
                f"{state.waiting.variable} (step {state.waiting.step_index})",
            )

    if result.error is not None and result.error.suggestion:
        table.add_row("Suggestion", result.error.suggestion)

    console.print(Panel(table, title=f"[{style}]Stepwise[/{style}]", border_style=style))

    if result.completed and state is not None:
        console.print_json(json.dumps(state.variables, default=str))


def hierarchy_tree(node: HierarchyNode) -> Tree:
    """Build a Rich tree for a hierarchy node."""
    label = f"[cyan]{node.name}[/cyan] [dim]({node.step_count} steps)[/dim]"
    if node.step_name:
        label = f"[dim]{node.step_name} →[/dim] " + label
    if node.truncated:
        label += " [yellow]…[/yellow]"
    tree = Tree(label)
    for child in node.children:
        tree.add(hierarchy_tree(child))
    return tree


def display_status(
    state: ExecutionState,
    hierarchy: HierarchyNode,
    console: Console,
    as_json: bool = False,
) -> None:
    """Display an instance's state and hierarchy."""
    if as_json:
        console.print_json(
            json.dumps({"state": state.to_record(), "hierarchy": hierarchy.to_dict()})
        )
        return

    style = STATUS_STYLES.get(state.status, "white")
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("Instance", state.instance_id)
    table.add_row("Workflow", state.workflow_name)
    table.add_row("Status", f"[{style}]{state.status.value}[/{style}]")
    table.add_row("Position", f"{state.current_step_index}/{hierarchy.step_count}")
    if state.waiting is not None:
        table.add_row("Waiting for", f"{state.waiting.variable} (step {state.waiting.step_index})")
    if state.paused_at is not None and state.paused:
        table.add_row("Paused at", state.paused_at.isoformat())
    table.add_row("Started", state.started_at.isoformat())
    table.add_row("Updated", state.updated_at.isoformat())
    console.print(Panel(table, title="[cyan]Instance[/cyan]", border_style=style))

    if state.variables:
        variables = Table(title="Variables")
        variables.add_column("Name", style="cyan")
        variables.add_column("Value")
        for name, value in sorted(state.variables.items()):
            text = value if isinstance(value, str) else json.dumps(value, default=str)
            variables.add_row(name, text if len(text) <= 80 else text[:77] + "...")
        console.print(variables)

    console.print(hierarchy_tree(hierarchy))
