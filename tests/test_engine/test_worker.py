"""Unit tests for WorkflowRunner and WorkflowWorker.

Tests cover:
- Running until completion or suspension
- Step caps and per-step deadlines
- Single-flight background tasks per instance
- Waiting for, cancelling and shutting down runs
"""

import asyncio

import pytest

from stepwise.engine.results import Continue
from stepwise.engine.state import ExecutionStatus
from stepwise.engine.worker import WorkflowRunner, WorkflowWorker


class TestWorkflowRunner:
    """Tests for WorkflowRunner."""

    @pytest.mark.asyncio
    async def test_runs_to_completion(self, make_executor, display_workflow) -> None:
        """Test the runner advances until the workflow completes."""
        runner = WorkflowRunner(make_executor(display_workflow("plain", 4)))

        result = await runner.run()

        assert result.completed
        assert runner.steps_run == 4

    @pytest.mark.asyncio
    async def test_stops_at_elicit(self, make_executor, prd_definition) -> None:
        """Test the runner stops when the instance waits for input."""
        executor = make_executor(prd_definition)

        result = await WorkflowRunner(executor).run()

        assert result.status is ExecutionStatus.WAITING_FOR_INPUT
        assert executor.get_state().current_step_index == 1

    @pytest.mark.asyncio
    async def test_stops_at_failure(self, make_executor, registry, display_workflow) -> None:
        """Test the runner returns the first failed result."""

        async def boom(step, context):
            raise ValueError("boom")

        registry.register("display", boom)
        runner = WorkflowRunner(make_executor(display_workflow("plain", 3)))

        result = await runner.run()

        assert result.success is False
        assert runner.steps_run == 1

    @pytest.mark.asyncio
    async def test_step_cap(self, make_executor, display_workflow) -> None:
        """Test the runner stops after max_steps calls."""
        executor = make_executor(display_workflow("plain", 10))

        result = await WorkflowRunner(executor, max_steps=3).run()

        assert result.status is ExecutionStatus.RUNNING
        assert executor.get_state().current_step_index == 3

    def test_invalid_step_cap(self, make_executor, display_workflow) -> None:
        """Test max_steps must be positive."""
        with pytest.raises(ValueError):
            WorkflowRunner(make_executor(display_workflow("plain", 1)), max_steps=0)

    @pytest.mark.asyncio
    async def test_step_timeout_sets_deadline(
        self, make_executor, registry, display_workflow
    ) -> None:
        """Test handlers receive a deadline when a step timeout is set."""
        remaining = []

        async def record(step, context):
            remaining.append(context.time_remaining())
            return Continue()

        registry.register("display", record)
        executor = make_executor(display_workflow("plain", 2))

        await WorkflowRunner(executor, step_timeout=30).run()

        assert len(remaining) == 2
        assert all(0 < value <= 30 for value in remaining)

    @pytest.mark.asyncio
    async def test_waits_for_shared_lock(self, make_executor, display_workflow) -> None:
        """Test no step runs while another holder keeps the lock."""
        executor = make_executor(display_workflow("plain", 2))
        lock = asyncio.Lock()
        await lock.acquire()

        task = asyncio.create_task(WorkflowRunner(executor, lock=lock).run())
        await asyncio.sleep(0)
        assert executor.get_state().current_step_index == 0

        lock.release()
        result = await task

        assert result.completed


class TestWorkflowWorker:
    """Tests for WorkflowWorker."""

    @pytest.mark.asyncio
    async def test_start_and_wait(self, make_executor, display_workflow) -> None:
        """Test a started run can be awaited."""
        worker = WorkflowWorker()
        worker.start("run-1", make_executor(display_workflow("plain", 2)))

        result = await worker.wait("run-1")

        assert result.completed
        assert worker.is_running("run-1") is False
        assert await worker.wait("run-1") is result

    @pytest.mark.asyncio
    async def test_wait_unknown_instance(self) -> None:
        """Test waiting on an instance that was never started."""
        assert await WorkflowWorker().wait("nope") is None

    @pytest.mark.asyncio
    async def test_single_flight(self, make_executor, registry, display_workflow) -> None:
        """Test starting a running instance returns the live task."""
        gate = asyncio.Event()

        async def blocked(step, context):
            await gate.wait()
            return Continue()

        registry.register("display", blocked)
        executor = make_executor(display_workflow("plain", 1))
        worker = WorkflowWorker()

        first = worker.start("run-1", executor)
        second = worker.start("run-1", executor)
        await asyncio.sleep(0)

        assert first is second
        assert worker.running == ["run-1"]
        gate.set()
        assert (await worker.wait("run-1")).completed

    @pytest.mark.asyncio
    async def test_cancel(self, make_executor, registry, display_workflow) -> None:
        """Test cancelling a run stops it and leaves state consistent."""

        async def forever(step, context):
            await asyncio.Event().wait()

        registry.register("display", forever)
        executor = make_executor(display_workflow("plain", 1))
        worker = WorkflowWorker()
        worker.start("run-1", executor)
        await asyncio.sleep(0)

        assert await worker.cancel("run-1") is True
        assert await worker.cancel("run-1") is False
        assert await worker.wait("run-1") is None
        assert executor.get_state().current_step_index == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_all(self, make_executor, registry, display_workflow) -> None:
        """Test shutdown cancels every in-flight run."""

        async def forever(step, context):
            await asyncio.Event().wait()

        registry.register("display", forever)
        worker = WorkflowWorker()
        for instance_id in ("a", "b"):
            worker.start(instance_id, make_executor(display_workflow("plain", 1), instance_id))
        await asyncio.sleep(0)

        await worker.shutdown()

        assert worker.running == []

