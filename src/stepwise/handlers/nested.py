# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Nested workflow handlers: workflow, sub-workflow and route.

A nested workflow runs in its own StepExecutor against the same state
store, under a derived instance id:

- ``<parent>/<step>`` for workflow and sub-workflow steps
- ``<parent>/<step>/<k>`` for the k-th target of a route step

Because child progress is persisted, re-dispatching a nested step after a
suspension picks every child up where it stopped. Completed children are
not re-run.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any

from stepwise.engine.context import StepContext, inheritable_variables
from stepwise.engine.executor import StepExecutor
from stepwise.engine.results import Continue, Failed, StepOutcome, Suspend
from stepwise.engine.state import ExecutionState, ExecutionStatus, utcnow
from stepwise.exceptions import CycleError, HandlerError, StepwiseError
from stepwise.handlers.base import ActionHandler

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef
    from stepwise.config.sources import DefinitionSource
    from stepwise.engine.store import StateStore
    from stepwise.handlers.registry import ActionHandlerRegistry

logger = logging.getLogger(__name__)

LEVEL_PATTERN = re.compile(r"level[_-]?(\d+)", re.IGNORECASE)
DIGITS_PATTERN = re.compile(r"\d+")

MIN_LEVEL = 0
MAX_LEVEL = 4


def child_instance_id(parent_id: str, step_name: str, position: int | None = None) -> str:
    """Derive the instance id of a nested workflow."""
    child_id = f"{parent_id}/{step_name}"
    if position is not None:
        child_id = f"{child_id}/{position}"
    return child_id


def extract_level(value: Any) -> int | None:
    """Extract a complexity level from a resolved routing condition.

    Accepts integers and strings such as ``"2"``, ``"level_2"`` or
    ``"Level 2 (medium)"``.

    Example:
        >>> extract_level("level_3")
        3
        >>> extract_level("unknown") is None
        True
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    match = LEVEL_PATTERN.search(text)
    if match:
        return int(match.group(1))
    match = DIGITS_PATTERN.search(text)
    return int(match.group(0)) if match else None


class NestedWorkflowRunner:
    """Shared machinery for handlers that run child workflows.

    Args:
        source: Resolves workflow references to definitions.
        store: State store shared with the parent executor.
        registry: Handler registry used by child executors.
        max_depth: Maximum nesting depth below the root workflow.
        max_steps: Maximum steps advanced in one child per dispatch.
    """

    def __init__(
        self,
        source: DefinitionSource,
        store: StateStore,
        registry: ActionHandlerRegistry,
        max_depth: int = 10,
        max_steps: int = 1000,
    ) -> None:
        self.source = source
        self.store = store
        self.registry = registry
        self.max_depth = max_depth
        self.max_steps = max_steps

    def child_variables(self, context: StepContext) -> dict[str, Any]:
        """Variables seeding a new child instance.

        The child inherits the parent's variables (minus engine-internal
        ones), then the step's ``context_vars``, then ``PARENT_WORKFLOW`` and
        ``WORKFLOW_DEPTH``.
        """
        variables = inheritable_variables(context.variables)
        variables.update(context.param("context_vars", {}))
        variables["PARENT_WORKFLOW"] = context.workflow_name
        variables["WORKFLOW_DEPTH"] = int(context.variables.get("WORKFLOW_DEPTH") or 0) + 1
        return variables

    def child_executor(self, context: StepContext) -> StepExecutor:
        """Executor for a child of the step being dispatched."""
        return StepExecutor(
            self.store,
            self.registry,
            source=self.source,
            lineage=context.lineage,
            max_hierarchy_depth=self.max_depth,
        )

    async def run(
        self,
        step: StepDef,
        context: StepContext,
        reference: str,
        child_id: str,
    ) -> StepOutcome | ExecutionState:
        """Drive one child workflow as far as it can go.

        Returns:
            The child's final state if it completed, otherwise the outcome
            the parent step should report: Suspend with a delegating marker
            when the child waits for input, Failed when it cannot proceed.
        """
        try:
            definition = self.source.get(reference)
        except StepwiseError as e:
            return Failed(
                HandlerError(
                    f"Cannot load nested workflow '{reference}': {e.message}",
                    suggestion=e.suggestion,
                    step_name=step.name,
                    action=step.action,
                    original_error=e,
                )
            )

        if definition.name in context.lineage:
            start = context.lineage.index(definition.name)
            cycle = [*context.lineage[start:], definition.name]
            return Failed(
                CycleError(f"Circular workflow reference: {' -> '.join(cycle)}", cycle=cycle)
            )

        if len(context.lineage) > self.max_depth:
            return Failed(
                HandlerError(
                    f"Nested workflow '{definition.name}' exceeds the maximum depth of {self.max_depth}",
                    suggestion="Flatten the workflow hierarchy or raise STEPWISE_MAX_HIERARCHY_DEPTH",
                    step_name=step.name,
                    action=step.action,
                )
            )

        executor = self.child_executor(context)
        executor.initialize(definition, child_id, self.child_variables(context))
        logger.debug("Running nested workflow %s as %s", definition.name, child_id)

        result = None
        for _ in range(self.max_steps):
            result = await executor.execute_next_step(deadline=context.deadline)
            if result.status is not ExecutionStatus.RUNNING:
                break
        else:
            return Failed(
                HandlerError(
                    f"Nested workflow '{definition.name}' did not finish within {self.max_steps} steps",
                    step_name=step.name,
                    action=step.action,
                )
            )

        if not result.success:
            error = result.error
            return Failed(
                HandlerError(
                    f"Nested workflow '{definition.name}' failed: {error.message if error else result.message}",
                    suggestion=error.suggestion if error else None,
                    step_name=step.name,
                    action=step.action,
                )
            )

        state = result.state
        if result.status is ExecutionStatus.COMPLETED:
            return state

        if result.status is ExecutionStatus.WAITING_FOR_INPUT and state.waiting is not None:
            return Suspend(
                variable=state.waiting.variable,
                step_index=context.step_index,
                child=child_id,
                prompt=state.waiting.prompt,
            )

        return Failed(
            HandlerError(
                f"Nested workflow '{definition.name}' is paused",
                suggestion=f"Resume instance '{child_id}' first",
                step_name=step.name,
                action=step.action,
            )
        )


class WorkflowHandler(NestedWorkflowRunner, ActionHandler):
    """Runs the workflow named by ``workflow_path`` as a nested unit.

    Handles both ``workflow`` and ``sub-workflow`` steps. When the step has
    a ``variable``, the child's final variables are bound to it.
    """

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        reference = context.param("workflow_path")
        outcome = await self.run(
            step, context, reference, child_instance_id(context.instance_id, step.name)
        )
        if not isinstance(outcome, ExecutionState):
            return outcome

        variable = context.param("variable")
        return Continue(
            variable=variable,
            value=inheritable_variables(outcome.variables) if variable else None,
            message=f"Nested workflow '{outcome.workflow_name}' completed",
        )


class RouteHandler(NestedWorkflowRunner, ActionHandler):
    """Runs the workflows a routing table selects for a complexity level.

    The step's ``condition`` resolves to a level between 0 and 4. The
    targets listed under ``level_N`` (or ``default``) run in order; the
    first failure stops the route. The routing result is bound to
    ``output_var`` and to ``routing_decision``.
    """

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        raw_level = context.param("condition")
        level = extract_level(raw_level)
        if level is None or not MIN_LEVEL <= level <= MAX_LEVEL:
            raise HandlerError(
                f"Invalid routing level: {raw_level} (must be {MIN_LEVEL}-{MAX_LEVEL})",
                suggestion="Bind the complexity level variable before the route step",
                step_name=step.name,
                action=step.action,
            )

        targets = step.routing.targets_for(level) if step.routing else None
        if targets is None:
            raise HandlerError(
                f"No routing configuration found for level {level}",
                suggestion=f"Add level_{level} or default to the routing table",
                step_name=step.name,
                action=step.action,
            )

        logger.info("Routing %s to level %d workflows: %s", context.instance_id, level, targets)
        executed: list[str] = []
        for position, reference in enumerate(targets):
            child_id = child_instance_id(context.instance_id, step.name, position)
            outcome = await self.run(step, context, reference, child_id)
            if isinstance(outcome, Failed):
                if isinstance(outcome.error, CycleError):
                    return outcome
                return Failed(
                    HandlerError(
                        f"Routing failed at workflow {reference}: {outcome.error.message}",
                        suggestion=outcome.error.suggestion,
                        step_name=step.name,
                        action=step.action,
                        original_error=outcome.error,
                    )
                )
            if isinstance(outcome, Suspend):
                return outcome
            executed.append(reference)

        decision = {
            "level": level,
            "workflows_executed": len(executed),
            "workflow_paths": executed,
            "completed_at": utcnow().isoformat(),
            "success": True,
        }
        return Continue(
            variable=context.param("output_var"),
            value=decision if context.param("output_var") else None,
            bindings={"routing_decision": decision},
            message=f"Routing complete: {len(executed)}/{len(targets)} workflows executed",
        )
