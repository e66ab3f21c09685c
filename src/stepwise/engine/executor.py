# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Step executor: advances a workflow instance one step at a time.

The executor is stateless between calls. Every operation reads the
instance's ExecutionState from the store, works on a transient copy and
writes it back at most once. A failed call never writes, so retrying it is
always safe.

Typical use::

    executor = StepExecutor(store, registry)
    executor.initialize(definition, "prd-1")
    result = await executor.execute_next_step()
    while result.status is ExecutionStatus.RUNNING:
        result = await executor.execute_next_step()
    if result.waiting:
        executor.submit_input(result.state.waiting.step_index, "enterprise")
"""

from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any

from stepwise.config.sources import InMemoryDefinitionSource
from stepwise.engine.conditions import ConditionEvaluator
from stepwise.engine.context import ParameterResolver, StepContext, freeze_variables
from stepwise.engine.hierarchy import DEFAULT_MAX_DEPTH, HierarchyNode, HierarchyResolver
from stepwise.engine.results import Continue, ExecutionResult, Failed, Suspend
from stepwise.engine.state import ExecutionState, WaitingMarker, utcnow
from stepwise.exceptions import (
    ConditionError,
    HandlerError,
    InvalidTransitionError,
    NotFoundError,
    PersistenceError,
    StepwiseError,
)

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef, WorkflowDefinition
    from stepwise.config.sources import DefinitionSource
    from stepwise.engine.store import StateStore
    from stepwise.handlers.registry import ActionHandlerRegistry

logger = logging.getLogger(__name__)


class StepExecutor:
    """Executes one workflow instance against a state store.

    Args:
        store: State store owning the persisted ExecutionState.
        registry: Handler registry steps are dispatched through.
        source: Resolves nested workflow references for get_hierarchy.
        resolver: Substitutes variables into step parameters.
        conditions: Evaluates step guard conditions.
        lineage: Names of the workflows enclosing this one, outermost first.
        max_hierarchy_depth: Default depth limit for get_hierarchy.
    """

    def __init__(
        self,
        store: StateStore,
        registry: ActionHandlerRegistry,
        *,
        source: DefinitionSource | None = None,
        resolver: ParameterResolver | None = None,
        conditions: ConditionEvaluator | None = None,
        lineage: tuple[str, ...] = (),
        max_hierarchy_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.store = store
        self.registry = registry
        self.source = source
        self.resolver = resolver or ParameterResolver()
        self.conditions = conditions or ConditionEvaluator()
        self.lineage = tuple(lineage)
        self.max_hierarchy_depth = max_hierarchy_depth
        self._definition: WorkflowDefinition | None = None
        self._instance_id: str | None = None

    @property
    def definition(self) -> WorkflowDefinition:
        """Definition of the initialized instance."""
        if self._definition is None:
            raise InvalidTransitionError(
                "Executor has not been initialized",
                suggestion="Call initialize() before operating on the instance",
            )
        return self._definition

    @property
    def instance_id(self) -> str:
        """Id of the initialized instance."""
        if self._instance_id is None:
            raise InvalidTransitionError(
                "Executor has not been initialized",
                suggestion="Call initialize() before operating on the instance",
            )
        return self._instance_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(
        self,
        definition: WorkflowDefinition,
        instance_id: str,
        variables: dict[str, Any] | None = None,
    ) -> ExecutionState:
        """Load or create the state of an instance. Never advances a step.

        A new instance starts at index 0 with the definition's default
        variables, overridden by ``variables``. For an existing instance the
        persisted state is returned unchanged and ``variables`` is ignored.

        Raises:
            InvalidTransitionError: If the id belongs to another workflow.
            PersistenceError: If the store cannot be read or written.
        """
        self._definition = definition
        self._instance_id = instance_id

        state = self.store.read(instance_id)
        if state is not None:
            if state.workflow_name and state.workflow_name != definition.name:
                raise InvalidTransitionError(
                    f"Instance '{instance_id}' belongs to workflow '{state.workflow_name}', "
                    f"not '{definition.name}'",
                    suggestion="Use a different instance id or reset the existing instance",
                    instance_id=instance_id,
                    current_status=state.status.value,
                )
            logger.debug("Loaded instance %s at step %d", instance_id, state.current_step_index)
            return state.snapshot()

        seed = copy.deepcopy(definition.variables)
        seed.update(copy.deepcopy(variables or {}))
        state = ExecutionState(
            instance_id=instance_id,
            workflow_name=definition.name,
            variables=seed,
        )
        if definition.step_count == 0:
            state.completed = True
        self.store.write(instance_id, state)
        logger.info("Created instance %s of workflow %s", instance_id, definition.name)
        return state.snapshot()

    def reset(self) -> bool:
        """Delete the persisted state of the instance and of its nested instances.

        Returns:
            True if the instance's own state existed.

        Raises:
            PersistenceError: If a state document cannot be removed.
        """
        instance_id = self.instance_id
        deleted = self.store.delete(instance_id)
        prefix = f"{instance_id}/"
        for other in self.store.list_ids():
            if other.startswith(prefix):
                self.store.delete(other)
        logger.info("Reset instance %s", instance_id)
        return deleted

    def get_state(self) -> ExecutionState:
        """Return a deep-copied snapshot of the persisted state.

        Raises:
            NotFoundError: If the instance has no persisted state.
        """
        return self._load().snapshot()

    def get_hierarchy(self, max_depth: int | None = None) -> HierarchyNode:
        """Build the nested workflow tree of the instance's definition.

        Raises:
            CycleError: If nested references form a cycle.
            DefinitionError: If a nested reference cannot be resolved.
        """
        definition = self.definition
        source = self.source or InMemoryDefinitionSource([definition])
        resolver = HierarchyResolver(source, max_depth=self.max_hierarchy_depth)
        return resolver.resolve(definition, max_depth=max_depth)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    async def execute_next_step(self, deadline: float | None = None) -> ExecutionResult:
        """Advance the instance by at most one step.

        Args:
            deadline: Optional ``time.monotonic()`` deadline passed to the handler.

        Returns:
            ExecutionResult whose status is running, waiting_for_input,
            paused, completed or failed. Completed, waiting and paused
            instances are left untouched.

        Raises:
            NotFoundError: If the instance has no persisted state.
        """
        definition = self.definition
        try:
            state = self._load()
        except PersistenceError as e:
            return ExecutionResult.failure(e, None)

        if state.completed:
            return ExecutionResult.from_state(state, message="Workflow already completed")
        if state.waiting is not None:
            return ExecutionResult.from_state(
                state,
                step_name=self._step_name(state.waiting.step_index),
                message=f"Waiting for input: {state.waiting.variable}",
            )
        if state.paused:
            return ExecutionResult.from_state(state, message="Workflow is paused")

        index = state.current_step_index
        if index >= definition.step_count:
            return self._persist_advance(state, None, Continue(), advance=False)

        step = definition.steps[index]

        if state.answered_step == index:
            logger.debug("Step '%s' already received its input", step.name)
            return self._persist_advance(state, step, Continue(message="Input received"))

        if step.condition and step.action != "route" and not self._guard_passes(step, state):
            logger.info("Skipping step '%s': condition is false", step.name)
            return self._persist_advance(
                state, step, Continue(message=f"Skipped step '{step.name}'")
            )

        try:
            params = self.resolver.resolve(step, state.variables)
        except StepwiseError as e:
            logger.warning("Failed to resolve parameters of step '%s': %s", step.name, e.message)
            return ExecutionResult.failure(e, state, step_name=step.name)

        context = StepContext(
            instance_id=state.instance_id,
            workflow_name=definition.name,
            step_index=index,
            variables=freeze_variables(state.variables),
            params=params,
            deadline=deadline,
            lineage=(*self.lineage, definition.name),
        )

        logger.info(
            "Executing step %d/%d '%s' (%s) of %s",
            index + 1,
            definition.step_count,
            step.name,
            step.action,
            state.instance_id,
        )
        outcome = await self.registry.dispatch(step, context)

        if isinstance(outcome, Failed):
            logger.warning("Step '%s' failed: %s", step.name, outcome.error.message)
            return ExecutionResult.failure(outcome.error, state, step_name=step.name)
        if isinstance(outcome, Suspend):
            return self._persist_suspend(state, step, outcome)
        return self._persist_advance(state, step, outcome)

    def _guard_passes(self, step: StepDef, state: ExecutionState) -> bool:
        try:
            return self.conditions.evaluate(step.condition, state.variables)
        except ConditionError as e:
            logger.warning("Condition of step '%s' could not be evaluated: %s", step.name, e.message)
            return False

    def _persist_advance(
        self,
        state: ExecutionState,
        step: StepDef | None,
        outcome: Continue,
        advance: bool = True,
    ) -> ExecutionResult:
        """Apply a Continue outcome in a single write."""
        step_name = step.name if step else None
        updated = state.snapshot()
        updated.variables.update(copy.deepcopy(outcome.all_bindings()))
        if advance:
            updated.current_step_index += 1
        updated.answered_step = None
        updated.updated_at = utcnow()
        if updated.current_step_index >= self.definition.step_count:
            updated.completed = True

        try:
            self.store.write(updated.instance_id, updated)
        except PersistenceError as e:
            return ExecutionResult.failure(e, state, step_name=step_name)

        if updated.completed:
            logger.info("Instance %s completed", updated.instance_id)
            message = "Workflow completed"
        else:
            message = outcome.message or f"Step '{step_name}' completed"
        return ExecutionResult.from_state(updated, step_name=step_name, message=message)

    def _persist_suspend(
        self,
        state: ExecutionState,
        step: StepDef,
        outcome: Suspend,
    ) -> ExecutionResult:
        """Persist a waiting marker for a suspended step."""
        index = state.current_step_index
        if outcome.step_index != index:
            error = HandlerError(
                f"Handler suspended step {outcome.step_index} while executing step {index}",
                step_name=step.name,
                action=step.action,
            )
            return ExecutionResult.failure(error, state, step_name=step.name)

        now = utcnow()
        updated = state.snapshot()
        updated.waiting = WaitingMarker(
            variable=outcome.variable,
            step_index=index,
            child=outcome.child,
            prompt=outcome.prompt,
        )
        updated.paused = True
        updated.paused_at = now
        updated.updated_at = now

        try:
            self.store.write(updated.instance_id, updated)
        except PersistenceError as e:
            return ExecutionResult.failure(e, state, step_name=step.name)

        logger.info(
            "Instance %s waiting for '%s' at step %d", updated.instance_id, outcome.variable, index
        )
        return ExecutionResult.from_state(
            updated, step_name=step.name, message=f"Waiting for input: {outcome.variable}"
        )

    # ------------------------------------------------------------------
    # Input and control
    # ------------------------------------------------------------------

    def submit_input(self, step_index: int, value: Any) -> ExecutionResult:
        """Resolve the waiting marker with an externally supplied value.

        The value is bound to the marker's variable and the marker cleared;
        the next execute_next_step completes the suspended step without
        running it again. When the marker delegates to a nested instance the
        value is forwarded there and the parent step runs again on the next
        call, resuming the nested workflow.

        Raises:
            InvalidTransitionError: If the instance is not waiting, or the
                step index does not match the waiting marker. State is
                left unchanged.
            NotFoundError: If the instance has no persisted state.
            PersistenceError: If the new state cannot be written.
        """
        state = self._load()
        marker = state.waiting
        if marker is None:
            raise InvalidTransitionError(
                f"Instance '{state.instance_id}' is not waiting for input",
                suggestion="Input is only accepted while the instance waits at an elicit step",
                instance_id=state.instance_id,
                current_status=state.status.value,
            )
        if marker.step_index != step_index:
            raise InvalidTransitionError(
                f"Input for step {step_index} does not match the waiting step {marker.step_index}",
                suggestion=f"Submit input for step {marker.step_index} ('{marker.variable}')",
                instance_id=state.instance_id,
                current_status=state.status.value,
            )

        chain = self._delegation_chain(state)

        # Innermost first: the parent marker is cleared last, so a failed
        # write leaves the call retryable.
        for child_state in reversed(chain):
            self.store.write(child_state.instance_id, self._resolve_marker(child_state, value))
        updated = self._resolve_marker(state, value)
        self.store.write(updated.instance_id, updated)

        logger.info("Instance %s received input for '%s'", state.instance_id, marker.variable)
        return ExecutionResult.from_state(
            updated,
            step_name=self._step_name(step_index),
            message=f"Input accepted for {marker.variable}",
        )

    def _delegation_chain(self, state: ExecutionState) -> list[ExecutionState]:
        """Load the nested instances a waiting marker delegates to.

        The chain ends early at a nested instance that exists but no longer
        waits: an earlier, interrupted submit already delivered the value
        from there inward.

        Raises:
            InvalidTransitionError: If a delegated instance does not exist.
        """
        chain: list[ExecutionState] = []
        current = state
        while current.waiting is not None and current.waiting.child is not None:
            child_id = current.waiting.child
            child = self.store.read(child_id)
            if child is None:
                raise InvalidTransitionError(
                    f"Nested instance '{child_id}' is not waiting for input",
                    suggestion="Run the workflow again to refresh its waiting state",
                    instance_id=state.instance_id,
                    current_status=state.status.value,
                )
            if child.waiting is None:
                logger.debug("Nested instance %s already received its input", child_id)
                break
            chain.append(child)
            current = child
        return chain

    @staticmethod
    def _resolve_marker(state: ExecutionState, value: Any) -> ExecutionState:
        """Return a copy of a waiting state with its marker resolved."""
        marker = state.waiting
        updated = state.snapshot()
        updated.waiting = None
        updated.paused = False
        updated.updated_at = utcnow()
        if marker is not None and marker.child is None:
            updated.variables[marker.variable] = copy.deepcopy(value)
            updated.answered_step = marker.step_index
        return updated

    def pause(self) -> ExecutionResult:
        """Hold the instance without altering its step index.

        Pausing an already paused instance is a no-op.

        Raises:
            InvalidTransitionError: If the instance has completed or is
                waiting for input.
            NotFoundError: If the instance has no persisted state.
        """
        state = self._load()
        if state.completed:
            raise InvalidTransitionError(
                f"Instance '{state.instance_id}' has completed and cannot be paused",
                instance_id=state.instance_id,
                current_status=state.status.value,
            )
        if state.waiting is not None:
            raise InvalidTransitionError(
                f"Instance '{state.instance_id}' is waiting for input and cannot be paused",
                suggestion="Submit input first, then pause before the next step runs",
                instance_id=state.instance_id,
                current_status=state.status.value,
            )
        if state.paused:
            return ExecutionResult.from_state(state, message="Workflow already paused")

        now = utcnow()
        updated = state.snapshot()
        updated.paused = True
        updated.paused_at = now
        updated.updated_at = now
        self.store.write(updated.instance_id, updated)
        logger.info("Paused instance %s at step %d", updated.instance_id, updated.current_step_index)
        return ExecutionResult.from_state(updated, message="Workflow paused")

    def resume(self) -> ExecutionResult:
        """Release an operator hold so the instance can advance again.

        Resuming an instance that is not paused is a no-op.

        Raises:
            InvalidTransitionError: If the instance is waiting for input.
            NotFoundError: If the instance has no persisted state.
        """
        state = self._load()
        if state.waiting is not None:
            raise InvalidTransitionError(
                f"Instance '{state.instance_id}' is waiting for input and cannot be resumed",
                suggestion=f"Submit input for step {state.waiting.step_index} instead",
                instance_id=state.instance_id,
                current_status=state.status.value,
            )
        if not state.paused:
            return ExecutionResult.from_state(state, message="Workflow is not paused")

        updated = state.snapshot()
        updated.paused = False
        updated.updated_at = utcnow()
        self.store.write(updated.instance_id, updated)
        logger.info("Resumed instance %s", updated.instance_id)
        return ExecutionResult.from_state(updated, message="Workflow resumed")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self) -> ExecutionState:
        instance_id = self.instance_id
        state = self.store.read(instance_id)
        if state is None:
            raise NotFoundError(
                f"No execution state for instance '{instance_id}'",
                instance_id=instance_id,
            )
        return state

    def _step_name(self, index: int) -> str | None:
        steps = self.definition.steps
        return steps[index].name if 0 <= index < len(steps) else None
