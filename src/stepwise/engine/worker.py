# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Background driving of workflow instances.

WorkflowRunner calls execute_next_step in a loop until the instance blocks
(waiting for input, paused, completed or failed). WorkflowWorker runs one
such loop per instance id as an asyncio task, so the request that started or
resumed an instance can return immediately, and shutdown can cancel every
in-flight run cleanly.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING

from stepwise.engine.results import ExecutionResult

if TYPE_CHECKING:
    from stepwise.engine.executor import StepExecutor

logger = logging.getLogger(__name__)

DEFAULT_MAX_STEPS = 1000


class WorkflowRunner:
    """Drives a single initialized executor until it blocks.

    Args:
        executor: An initialized StepExecutor.
        max_steps: Maximum number of steps advanced by one run.
        step_timeout: Optional per-step deadline in seconds passed to handlers.
        lock: Held around each step. Control operations that share it never
            interleave with a step in flight.

    Example:
        >>> executor.initialize(definition, "prd-1")
        >>> result = await WorkflowRunner(executor).run()
        >>> result.status
        <ExecutionStatus.WAITING_FOR_INPUT: 'waiting_for_input'>
    """

    def __init__(
        self,
        executor: StepExecutor,
        max_steps: int = DEFAULT_MAX_STEPS,
        step_timeout: float | None = None,
        lock: asyncio.Lock | None = None,
    ) -> None:
        if max_steps < 1:
            raise ValueError("max_steps must be at least 1")
        self.executor = executor
        self.max_steps = max_steps
        self.step_timeout = step_timeout
        self.lock = lock or asyncio.Lock()
        self.steps_run = 0

    async def run(self) -> ExecutionResult:
        """Advance the instance until it blocks or the step cap is reached.

        Returns:
            The result of the last executor call.
        """
        result: ExecutionResult | None = None
        for _ in range(self.max_steps):
            async with self.lock:
                deadline = None
                if self.step_timeout is not None:
                    deadline = time.monotonic() + self.step_timeout
                result = await self.executor.execute_next_step(deadline=deadline)
            self.steps_run += 1
            if result.blocked:
                return result
            # Let pause, cancel and input requests interleave between steps
            await asyncio.sleep(0)

        logger.warning(
            "Instance %s stopped after %d steps without blocking",
            self.executor.instance_id,
            self.max_steps,
        )
        return result


class WorkflowWorker:
    """Runs one background task per workflow instance.

    Starting an instance that already has a live task returns that task
    (single flight per id). Runs can be cancelled individually or all at
    once on shutdown. The latest task per id is kept after it finishes so
    its result can still be awaited.

    Example:
        >>> worker = WorkflowWorker()
        >>> worker.start("prd-1", executor)
        >>> result = await worker.wait("prd-1")
        >>> await worker.shutdown()
    """

    def __init__(
        self,
        max_steps: int = DEFAULT_MAX_STEPS,
        step_timeout: float | None = None,
    ) -> None:
        self.max_steps = max_steps
        self.step_timeout = step_timeout
        self._tasks: dict[str, asyncio.Task[ExecutionResult]] = {}

    def start(
        self,
        instance_id: str,
        executor: StepExecutor,
        lock: asyncio.Lock | None = None,
    ) -> asyncio.Task[ExecutionResult]:
        """Start driving an instance in the background.

        Must be called from within a running event loop. The runner holds
        ``lock`` around each step.

        Returns:
            The task driving the instance; an existing live task if the
            instance is already being driven.
        """
        existing = self._tasks.get(instance_id)
        if existing is not None and not existing.done():
            logger.debug("Instance %s is already running", instance_id)
            return existing

        runner = WorkflowRunner(
            executor, max_steps=self.max_steps, step_timeout=self.step_timeout, lock=lock
        )
        task = asyncio.create_task(self._run(instance_id, runner), name=f"stepwise:{instance_id}")
        self._tasks[instance_id] = task
        task.add_done_callback(lambda t: self._finished(instance_id, t))
        logger.debug("Started background run for %s", instance_id)
        return task

    def is_running(self, instance_id: str) -> bool:
        """True if a background task is driving the instance."""
        task = self._tasks.get(instance_id)
        return task is not None and not task.done()

    @property
    def running(self) -> list[str]:
        """Ids of instances with a live background task, sorted."""
        return sorted(i for i, task in self._tasks.items() if not task.done())

    async def wait(self, instance_id: str) -> ExecutionResult | None:
        """Wait for the latest background run of an instance to finish.

        Returns:
            The run's final result, or None if the instance was never
            started or its run was cancelled.
        """
        task = self._tasks.get(instance_id)
        if task is None:
            return None
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled():
                return None
            raise

    async def cancel(self, instance_id: str) -> bool:
        """Cancel the background run of an instance and wait for it to stop.

        Returns:
            True if a live run was cancelled.
        """
        task = self._tasks.get(instance_id)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Cancelled background run for %s", instance_id)
        return True

    async def shutdown(self) -> None:
        """Cancel every in-flight run and wait for all of them to stop."""
        tasks = [task for task in self._tasks.values() if not task.done()]
        if not tasks:
            return
        logger.info("Shutting down %d background run(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, instance_id: str, runner: WorkflowRunner) -> ExecutionResult:
        try:
            result = await runner.run()
        except asyncio.CancelledError:
            logger.info("Run for %s cancelled after %d step(s)", instance_id, runner.steps_run)
            raise
        logger.info(
            "Run for %s stopped with status %s after %d step(s)",
            instance_id,
            result.status.value,
            runner.steps_run,
        )
        return result

    def _finished(self, instance_id: str, task: asyncio.Task[ExecutionResult]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Run for %s raised %s",
                instance_id,
                type(task.exception()).__name__,
                exc_info=task.exception(),
            )
