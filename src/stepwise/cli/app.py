# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Typer application definition for the Stepwise CLI.

This module defines the main Typer app, global options and the commands.
Command implementations live in ``stepwise.cli.run`` and
``stepwise.cli.validate``.
"""

from __future__ import annotations

import contextvars
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.text import Text

from stepwise import __version__

# Create the main Typer app
app = typer.Typer(
    name="stepwise",
    help="Stepwise - Run resumable, step-by-step workflows defined in YAML.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output
console = Console(stderr=True)
output_console = Console()

# Context variable for verbose mode (default True - show progress output)
verbose_mode: contextvars.ContextVar[bool] = contextvars.ContextVar("verbose_mode", default=True)

# Context variable for full verbose mode (--verbose flag - show full details)
full_mode: contextvars.ContextVar[bool] = contextvars.ContextVar("full_mode", default=False)


def is_verbose() -> bool:
    """Check if progress output is enabled (default True)."""
    return verbose_mode.get()


def is_full() -> bool:
    """Check if full verbose mode is enabled (--verbose flag).

    When full mode is enabled, messages are shown untruncated and engine
    log records are printed.
    """
    return full_mode.get()


def format_error(error: Exception) -> Panel:
    """Format an exception for Rich console display.

    Creates a styled Panel with error type, message, location (if available),
    and suggestion (if available).

    Args:
        error: The exception to format.

    Returns:
        Rich Panel with formatted error content.
    """
    from stepwise.exceptions import StepwiseError

    content = Text()

    if isinstance(error, StepwiseError):
        content.append(error.message, style="bold red")

        if error.file_path:
            content.append("\n\n")
            content.append("📍 Location: ", style="yellow")
            content.append(error.file_path, style="cyan")

        # Field path for definition errors
        if getattr(error, "field_path", None):
            content.append("\n")
            content.append("📋 Field: ", style="yellow")
            content.append(error.field_path, style="cyan")

        if error.suggestion:
            content.append("\n\n")
            content.append("💡 Suggestion: ", style="green")
            content.append(error.suggestion, style="white")

        error_type = error.error_type
    else:
        content.append(str(error).split("\n")[0], style="bold red")
        error_type = type(error).__name__

    return Panel(
        content,
        title=f"[bold red]❌ {error_type}[/bold red]",
        border_style="red",
        padding=(1, 2),
    )


def print_error(error: Exception) -> None:
    """Print a formatted error to stderr."""
    console.print(format_error(error))


def version_callback(value: bool) -> None:
    """Display version information and exit."""
    if value:
        output_console.print(f"Stepwise v{__version__}")
        raise typer.Exit()


def configure_logging(full: bool) -> None:
    """Route engine log records to the console when --verbose is set."""
    if full:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


StateDirOption = Annotated[
    Path | None,
    typer.Option(
        "--state-dir",
        help="Directory holding instance state files. Defaults to $STEPWISE_STATE_DIR.",
    ),
]

WorkflowsDirOption = Annotated[
    Path | None,
    typer.Option(
        "--workflows-dir",
        help="Directory nested workflow references resolve against. "
        "Defaults to the workflow file's directory.",
    ),
]

WorkflowArgument = Annotated[
    Path,
    typer.Argument(
        help="Path to the workflow YAML file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
        resolve_path=True,
    ),
]

InstanceArgument = Annotated[str, typer.Argument(help="Workflow instance id.")]


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-V",
            help="Show full messages and engine log output.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress progress output.",
        ),
    ] = False,
) -> None:
    """Stepwise - Run resumable, step-by-step workflows defined in YAML."""
    full_mode.set(verbose)
    verbose_mode.set(not quiet)
    configure_logging(verbose)


@app.command()
def run(
    workflow: WorkflowArgument,
    instance_id: Annotated[
        str | None,
        typer.Option(
            "--instance-id",
            "-n",
            help="Instance id. Defaults to the workflow name.",
        ),
    ] = None,
    raw_inputs: Annotated[
        list[str] | None,
        typer.Option(
            "--input",
            "-i",
            help="Initial variables in name=value format. Can be repeated.",
        ),
    ] = None,
    non_interactive: Annotated[
        bool,
        typer.Option(
            "--non-interactive",
            help="Stop at the first input request instead of prompting.",
        ),
    ] = False,
    state_dir: StateDirOption = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Run a workflow, or continue an existing instance of it.

    Steps are executed until the workflow completes. At elicit steps the
    answer is prompted for interactively; with --non-interactive the run
    stops and the instance can be continued later with 'stepwise input'.

    \b
    Examples:
        stepwise run create-prd.workflow.yaml
        stepwise run create-prd.workflow.yaml -n prd-1 -i project_name=Atlas
        stepwise run create-prd.workflow.yaml -n prd-1 --non-interactive
    """
    import asyncio

    from stepwise.cli.run import build_runtime, parse_input_flags, print_result, run_workflow_async

    try:
        inputs = parse_input_flags(raw_inputs or [])
        runtime = build_runtime(workflow, state_dir=state_dir, workflows_dir=workflows_dir)
        result = asyncio.run(
            run_workflow_async(
                runtime,
                instance_id or runtime.definition.name,
                inputs,
                interactive=not non_interactive,
            )
        )
    except typer.BadParameter:
        raise
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    print_result(result, output_console)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("input")
def submit_input(
    instance_id: InstanceArgument,
    workflow: WorkflowArgument,
    step: Annotated[int, typer.Option("--step", "-s", help="Index of the waiting step.")],
    value: Annotated[str, typer.Option("--value", help="Value to submit (JSON or text).")],
    state_dir: StateDirOption = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Submit input for a waiting instance and continue running it.

    The step index must match the step the instance is waiting at.

    \b
    Examples:
        stepwise input prd-1 create-prd.workflow.yaml --step 1 --value enterprise
    """
    import asyncio

    from stepwise.cli.run import build_runtime, coerce_value, print_result, submit_and_continue

    try:
        runtime = build_runtime(workflow, state_dir=state_dir, workflows_dir=workflows_dir)
        result = asyncio.run(submit_and_continue(runtime, instance_id, step, coerce_value(value)))
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    print_result(result, output_console)
    if not result.success:
        raise typer.Exit(code=1)


@app.command()
def status(
    instance_id: InstanceArgument,
    workflow: WorkflowArgument,
    as_json: Annotated[bool, typer.Option("--json", help="Print the status as JSON.")] = False,
    state_dir: StateDirOption = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Show the state of an instance and its workflow hierarchy.

    \b
    Examples:
        stepwise status prd-1 create-prd.workflow.yaml
        stepwise status prd-1 create-prd.workflow.yaml --json
    """
    from stepwise.cli.run import build_runtime, display_status

    try:
        runtime = build_runtime(workflow, state_dir=state_dir, workflows_dir=workflows_dir)
        executor = runtime.executor(instance_id, create=False)
        state = executor.get_state()
        hierarchy = executor.get_hierarchy()
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    display_status(state, hierarchy, output_console, as_json=as_json)


@app.command()
def pause(
    instance_id: InstanceArgument,
    workflow: WorkflowArgument,
    state_dir: StateDirOption = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Pause an instance without changing its position."""
    from stepwise.cli.run import build_runtime, print_result

    try:
        runtime = build_runtime(workflow, state_dir=state_dir, workflows_dir=workflows_dir)
        result = runtime.executor(instance_id, create=False).pause()
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    print_result(result, output_console)


@app.command()
def resume(
    instance_id: InstanceArgument,
    workflow: WorkflowArgument,
    state_dir: StateDirOption = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Clear an operator pause. Use 'stepwise run' to continue the instance."""
    from stepwise.cli.run import build_runtime, print_result

    try:
        runtime = build_runtime(workflow, state_dir=state_dir, workflows_dir=workflows_dir)
        result = runtime.executor(instance_id, create=False).resume()
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    print_result(result, output_console)


@app.command()
def reset(
    instance_id: InstanceArgument,
    workflow: WorkflowArgument,
    state_dir: StateDirOption = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Delete the state of an instance and of its nested instances."""
    from stepwise.cli.run import build_runtime

    try:
        runtime = build_runtime(workflow, state_dir=state_dir, workflows_dir=workflows_dir)
        deleted = runtime.executor(instance_id, create=False).reset()
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    if deleted:
        output_console.print(f"[green]✓[/green] Instance '{instance_id}' reset")
    else:
        output_console.print(f"[yellow]Instance '{instance_id}' had no state[/yellow]")


@app.command()
def validate(
    workflow: WorkflowArgument,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Validate a workflow YAML file without executing it.

    Checks the workflow file for:
    - Valid YAML syntax
    - Valid schema structure and known action kinds
    - Resolvable nested workflow references
    - Condition variables bound before use

    \b
    Examples:
        stepwise validate create-prd.workflow.yaml
    """
    from stepwise.cli.validate import display_validation_success, validate_workflow

    is_valid, definition, warnings = validate_workflow(workflow, output_console, workflows_dir)

    if is_valid and definition is not None:
        display_validation_success(definition, workflow, warnings, output_console)
    else:
        raise typer.Exit(code=1)


@app.command()
def tree(
    workflow: WorkflowArgument,
    max_depth: Annotated[
        int | None,
        typer.Option("--max-depth", "-d", help="Maximum nesting depth to expand."),
    ] = None,
    workflows_dir: WorkflowsDirOption = None,
) -> None:
    """Show the tree of nested workflows a workflow invokes.

    \b
    Examples:
        stepwise tree project-kickoff.workflow.yaml
        stepwise tree project-kickoff.workflow.yaml --max-depth 2
    """
    from stepwise.cli.validate import build_hierarchy, display_hierarchy

    try:
        hierarchy = build_hierarchy(workflow, workflows_dir, max_depth)
    except Exception as e:
        print_error(e)
        raise typer.Exit(code=1) from None

    display_hierarchy(hierarchy, output_console)
