# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Control surface for workflow instances.

WorkflowService ties the executor, the state store and the background
worker together behind the operations exposed to callers: start, pause,
resume, cancel, submit_input and status. Operations that let an instance
advance hand it to the worker and return immediately.

Control operations and background steps of one instance share a lock, so a
pause, resume, input or cancel waits for a step in flight to be persisted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from stepwise.config.settings import EngineSettings
from stepwise.engine.executor import StepExecutor
from stepwise.engine.worker import WorkflowWorker
from stepwise.exceptions import NotFoundError
from stepwise.handlers.registry import create_default_registry

if TYPE_CHECKING:
    from stepwise.config.schema import WorkflowDefinition
    from stepwise.config.sources import DefinitionSource
    from stepwise.engine.hierarchy import HierarchyNode
    from stepwise.engine.results import ExecutionResult
    from stepwise.engine.state import ExecutionState
    from stepwise.engine.store import StateStore
    from stepwise.handlers.reflect import ReflectionProvider
    from stepwise.handlers.registry import ActionHandlerRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StatusSnapshot:
    """Read-only view of an instance for status queries."""

    state: ExecutionState
    """Snapshot of the persisted execution state."""

    hierarchy: HierarchyNode
    """Nested workflow tree of the instance's definition."""

    running: bool = False
    """True while a background run is driving the instance."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        return {
            "status": self.state.status.value,
            "running": self.running,
            "state": self.state.to_record(),
            "hierarchy": self.hierarchy.to_dict(),
        }


class WorkflowService:
    """Starts, steers and inspects workflow instances.

    Args:
        store: State store for all instances.
        source: Resolves workflow references and persisted workflow names.
        registry: Handler registry. Defaults to the built-in handlers wired
            to ``store`` and ``source``.
        settings: Engine settings. Defaults to ``EngineSettings.from_env()``.
        worker: Background worker. Creates one if not provided.
        reflection_provider: Used by the default registry for reflect steps.

    Example:
        >>> service = WorkflowService(FileStateStore(".state"), DirectoryDefinitionSource("workflows"))
        >>> await service.start(definition, "prd-1")
        >>> await service.wait("prd-1")
        >>> service.status("prd-1").state.waiting.variable
        'project_scale'
    """

    def __init__(
        self,
        store: StateStore,
        source: DefinitionSource,
        registry: ActionHandlerRegistry | None = None,
        settings: EngineSettings | None = None,
        worker: WorkflowWorker | None = None,
        reflection_provider: ReflectionProvider | None = None,
    ) -> None:
        self.store = store
        self.source = source
        self.settings = settings or EngineSettings.from_env()
        self.registry = registry or create_default_registry(
            settings=self.settings,
            source=source,
            store=store,
            reflection_provider=reflection_provider,
        )
        self.worker = worker or WorkflowWorker(max_steps=self.settings.max_steps_per_run)
        self._definitions: dict[str, WorkflowDefinition] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def lock_for(self, instance_id: str) -> asyncio.Lock:
        """Return the lock serializing calls for an instance."""
        return self._locks.setdefault(instance_id, asyncio.Lock())

    def executor_for(self, instance_id: str, definition: WorkflowDefinition | None = None) -> StepExecutor:
        """Return an executor initialized for an existing instance.

        Without a definition, the one the instance was started with is used,
        falling back to the persisted workflow name resolved through the
        definition source.

        Raises:
            NotFoundError: If the instance does not exist.
        """
        state = self.store.read(instance_id)
        if state is None:
            raise NotFoundError(
                f"No execution state for instance '{instance_id}'",
                instance_id=instance_id,
            )
        if definition is None:
            definition = self._definitions.get(instance_id)
        if definition is None:
            definition = self.source.get(state.workflow_name)

        executor = StepExecutor(
            self.store,
            self.registry,
            source=self.source,
            max_hierarchy_depth=self.settings.max_hierarchy_depth,
        )
        executor.initialize(definition, instance_id)
        self._definitions[instance_id] = definition
        return executor

    async def start(
        self,
        definition: WorkflowDefinition,
        instance_id: str,
        variables: dict[str, Any] | None = None,
    ) -> ExecutionState:
        """Create or load an instance and drive it in the background.

        Returns:
            The state snapshot before any step has been advanced.
        """
        executor = StepExecutor(
            self.store,
            self.registry,
            source=self.source,
            max_hierarchy_depth=self.settings.max_hierarchy_depth,
        )
        state = executor.initialize(definition, instance_id, variables)
        self._definitions[instance_id] = definition
        self.worker.start(instance_id, executor, lock=self.lock_for(instance_id))
        logger.info("Started instance %s", instance_id)
        return state

    async def pause(self, instance_id: str) -> ExecutionResult:
        """Hold an instance. A step in flight is persisted first."""
        async with self.lock_for(instance_id):
            return self.executor_for(instance_id).pause()

    async def resume(self, instance_id: str) -> ExecutionResult:
        """Release an operator hold and continue driving the instance."""
        lock = self.lock_for(instance_id)
        async with lock:
            executor = self.executor_for(instance_id)
            result = executor.resume()
        if not result.completed:
            self.worker.start(instance_id, executor, lock=lock)
        return result

    async def submit_input(self, instance_id: str, step_index: int, value: Any) -> ExecutionResult:
        """Deliver input for a waiting instance and continue driving it.

        Raises:
            InvalidTransitionError: If the step index does not match the
                waiting marker.
        """
        lock = self.lock_for(instance_id)
        async with lock:
            executor = self.executor_for(instance_id)
            result = executor.submit_input(step_index, value)
        self.worker.start(instance_id, executor, lock=lock)
        return result

    async def cancel(self, instance_id: str) -> bool:
        """Stop any background run and delete the instance's state.

        Returns:
            True if the instance's state existed.
        """
        await self.worker.cancel(instance_id)
        async with self.lock_for(instance_id):
            try:
                executor = self.executor_for(instance_id)
            except NotFoundError:
                return False
            deleted = executor.reset()
        self._definitions.pop(instance_id, None)
        self._locks.pop(instance_id, None)
        return deleted

    def status(self, instance_id: str, max_depth: int | None = None) -> StatusSnapshot:
        """Return the instance's state snapshot and hierarchy tree.

        Raises:
            NotFoundError: If the instance does not exist.
            CycleError: If the definition's nested references form a cycle.
        """
        executor = self.executor_for(instance_id)
        return StatusSnapshot(
            state=executor.get_state(),
            hierarchy=executor.get_hierarchy(max_depth),
            running=self.worker.is_running(instance_id),
        )

    async def wait(self, instance_id: str) -> ExecutionResult | None:
        """Wait for the instance's current background run to finish."""
        return await self.worker.wait(instance_id)

    async def shutdown(self) -> None:
        """Cancel all background runs."""
        await self.worker.shutdown()
