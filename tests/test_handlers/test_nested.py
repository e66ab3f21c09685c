"""Unit tests for the workflow, sub-workflow and route handlers.

Tests cover:
- Complexity level extraction from routing conditions
- Child instance ids and inherited variables
- Routing to level targets and the default path
- The routing decision bound after a route completes
- Invalid levels and missing routing configuration
- Failures inside routed workflows
- Cycles and depth limits detected at run time
- Routed workflows suspending for input
"""

import pytest

from stepwise.config.schema import RoutingTable, StepDef, WorkflowDefinition
from stepwise.config.settings import EngineSettings
from stepwise.engine.context import StepContext
from stepwise.engine.executor import StepExecutor
from stepwise.handlers.nested import (
    NestedWorkflowRunner,
    child_instance_id,
    extract_level,
)
from stepwise.handlers.registry import create_default_registry


def leaf(name: str) -> WorkflowDefinition:
    return WorkflowDefinition(
        name=name,
        steps=[StepDef(name="done", action="display", message=f"{name} done")],
    )


def router(routing: RoutingTable, level="${LEVEL}", **variables) -> WorkflowDefinition:
    return WorkflowDefinition(
        name="triage",
        variables=variables,
        steps=[
            StepDef(
                name="route",
                action="route",
                condition=level,
                routing=routing,
                output_var="decision",
            )
        ],
    )


class TestExtractLevel:
    """Tests for extract_level."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (2, 2),
            ("3", 3),
            (" 1 ", 1),
            ("level_4", 4),
            ("Level 2 (medium)", 2),
            ("scale 3 of 4", 3),
            ("high", None),
            (True, None),
        ],
    )
    def test_levels(self, value, expected) -> None:
        """Test integers, numeric strings and level labels."""
        assert extract_level(value) == expected


class TestChildInstances:
    """Tests for child ids and inherited variables."""

    def test_child_instance_id(self) -> None:
        """Test nested and routed child ids."""
        assert child_instance_id("prd-1", "invoke") == "prd-1/invoke"
        assert child_instance_id("prd-1", "route", 2) == "prd-1/route/2"

    def test_child_variables(self, memory_store, source, registry) -> None:
        """Test inherited variables, context_vars and parent metadata."""
        runner = NestedWorkflowRunner(source, memory_store, registry)
        context = StepContext(
            instance_id="run-1",
            workflow_name="parent",
            step_index=0,
            variables={"team": "core", "owner": "ada", "_internal": 1, "WORKFLOW_DEPTH": 1},
            params={"context_vars": {"owner": "grace"}},
        )

        variables = runner.child_variables(context)

        assert variables == {
            "team": "core",
            "owner": "grace",
            "PARENT_WORKFLOW": "parent",
            "WORKFLOW_DEPTH": 2,
        }

    def test_child_executor_inherits_limits(self, memory_store, source, registry) -> None:
        """Test child executors carry the lineage and the hierarchy depth limit."""
        runner = NestedWorkflowRunner(source, memory_store, registry, max_depth=3)
        context = StepContext(
            instance_id="run-1",
            workflow_name="parent",
            step_index=0,
            variables={},
            params={},
            lineage=("root", "parent"),
        )

        executor = runner.child_executor(context)

        assert executor.max_hierarchy_depth == 3
        assert executor.lineage == ("root", "parent")
        assert executor.source is source


class TestWorkflowHandler:
    """Tests for workflow and sub-workflow steps."""

    @pytest.mark.asyncio
    async def test_sub_workflow_completes(self, make_executor, source, memory_store) -> None:
        """Test a sub-workflow runs to completion and binds its variables."""
        source.add(leaf("child"))
        parent = WorkflowDefinition(
            name="parent",
            variables={"team": "core"},
            steps=[
                StepDef(
                    name="invoke",
                    action="sub-workflow",
                    workflow_path="child",
                    context_vars={"mode": "fast"},
                    variable="child_vars",
                ),
                StepDef(name="after", action="display", message="after {team}"),
            ],
        )
        executor = make_executor(parent)

        result = await executor.execute_next_step()

        assert result.success
        assert result.state.current_step_index == 1
        child_vars = result.state.variables["child_vars"]
        assert child_vars["mode"] == "fast"
        assert child_vars["WORKFLOW_DEPTH"] == 1
        assert memory_store.read("run-1/invoke").completed is True

    @pytest.mark.asyncio
    async def test_without_variable_binds_nothing(self, make_executor, source) -> None:
        """Test a workflow step without a variable leaves variables alone."""
        source.add(leaf("child"))
        parent = WorkflowDefinition(
            name="parent",
            steps=[StepDef(name="invoke", action="workflow", workflow_path="child")],
        )
        executor = make_executor(parent)

        result = await executor.execute_next_step()

        assert result.completed
        assert result.state.variables == {}

    @pytest.mark.asyncio
    async def test_unknown_reference_fails(self, make_executor) -> None:
        """Test an unresolvable reference fails without advancing."""
        parent = WorkflowDefinition(
            name="parent",
            steps=[StepDef(name="invoke", action="workflow", workflow_path="ghost")],
        )
        executor = make_executor(parent)

        result = await executor.execute_next_step()

        assert not result.success
        assert "Cannot load nested workflow 'ghost'" in result.error.message
        assert executor.get_state().current_step_index == 0

    @pytest.mark.asyncio
    async def test_runtime_cycle(self, make_executor, source) -> None:
        """Test a workflow reached again through its own children fails."""
        source.add(
            WorkflowDefinition(
                name="loop-b",
                steps=[StepDef(name="back", action="workflow", workflow_path="loop-a")],
            )
        )
        loop_a = WorkflowDefinition(
            name="loop-a",
            steps=[StepDef(name="forth", action="workflow", workflow_path="loop-b")],
        )
        executor = make_executor(loop_a)

        result = await executor.execute_next_step()

        assert not result.success
        assert "Circular workflow reference: loop-a -> loop-b -> loop-a" in result.error.message
        assert executor.get_state().current_step_index == 0

    @pytest.mark.asyncio
    async def test_depth_limit(self, tmp_path, memory_store, source) -> None:
        """Test nesting deeper than the configured limit fails."""
        source.add(leaf("w2"))
        source.add(
            WorkflowDefinition(
                name="w1",
                steps=[StepDef(name="down", action="workflow", workflow_path="w2")],
            )
        )
        root = WorkflowDefinition(
            name="w0",
            steps=[StepDef(name="down", action="workflow", workflow_path="w1")],
        )
        registry = create_default_registry(
            settings=EngineSettings(max_hierarchy_depth=1, output_dir=tmp_path),
            source=source,
            store=memory_store,
        )
        executor = StepExecutor(memory_store, registry, source=source)
        executor.initialize(root, "deep")

        result = await executor.execute_next_step()

        assert not result.success
        assert "exceeds the maximum depth of 1" in result.error.message


class TestRouteHandler:
    """Tests for route steps."""

    @pytest.fixture(autouse=True)
    def leaves(self, source) -> None:
        for name in ("quick", "prd", "arch", "standard"):
            source.add(leaf(name))

    @pytest.mark.asyncio
    async def test_routes_level_targets(self, make_executor, memory_store) -> None:
        """Test the level's workflows run in order and the decision is bound."""
        definition = router(
            RoutingTable(level_0=["quick"], level_2=["prd", "arch"], default=["standard"]),
            LEVEL=2,
        )
        executor = make_executor(definition)

        result = await executor.execute_next_step()

        assert result.completed
        decision = result.state.variables["decision"]
        assert decision["level"] == 2
        assert decision["workflows_executed"] == 2
        assert decision["workflow_paths"] == ["prd", "arch"]
        assert decision["success"] is True
        assert "completed_at" in decision
        assert result.state.variables["routing_decision"] == decision
        assert memory_store.read("run-1/route/0").workflow_name == "prd"
        assert memory_store.read("run-1/route/1").workflow_name == "arch"

    @pytest.mark.asyncio
    async def test_default_path(self, make_executor) -> None:
        """Test unconfigured levels use the default targets."""
        definition = router(RoutingTable(level_0=["quick"], default=["standard"]), LEVEL="level_3")
        executor = make_executor(definition)

        result = await executor.execute_next_step()

        assert result.state.variables["decision"]["workflow_paths"] == ["standard"]

    @pytest.mark.asyncio
    async def test_empty_target_list(self, make_executor) -> None:
        """Test an explicitly empty level still binds a decision."""
        definition = router(RoutingTable(level_1=[], default=["standard"]), LEVEL=1)
        executor = make_executor(definition)

        result = await executor.execute_next_step()

        assert result.completed
        assert result.state.variables["decision"]["workflows_executed"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("level", ["high", 7])
    async def test_invalid_level(self, make_executor, level) -> None:
        """Test levels that are not 0-4 fail the step."""
        executor = make_executor(router(RoutingTable(default=["standard"]), LEVEL=level))

        result = await executor.execute_next_step()

        assert not result.success
        assert result.error.message.startswith("Invalid routing level")
        assert executor.get_state().current_step_index == 0

    @pytest.mark.asyncio
    async def test_missing_configuration(self, make_executor) -> None:
        """Test a level with neither targets nor a default fails."""
        executor = make_executor(router(RoutingTable(level_1=["quick"]), LEVEL=3))

        result = await executor.execute_next_step()

        assert not result.success
        assert result.error.message == "No routing configuration found for level 3"

    @pytest.mark.asyncio
    async def test_failure_names_target(self, make_executor) -> None:
        """Test a failing target stops the route and is named."""
        executor = make_executor(router(RoutingTable(level_2=["prd", "ghost"]), LEVEL=2))

        result = await executor.execute_next_step()

        assert not result.success
        assert result.error.message.startswith("Routing failed at workflow ghost:")
        assert "decision" not in executor.get_state().variables

    @pytest.mark.asyncio
    async def test_self_route_is_cycle(self, make_executor) -> None:
        """Test routing back to the routing workflow is a cycle."""
        executor = make_executor(router(RoutingTable(default=["triage"]), LEVEL=0))

        result = await executor.execute_next_step()

        assert not result.success
        assert result.error.kind == "CycleError"
        assert "triage -> triage" in result.error.message

    @pytest.mark.asyncio
    async def test_routed_workflow_waits_for_input(self, make_executor, source) -> None:
        """Test input reaches a routed workflow and the route then completes."""
        source.add(
            WorkflowDefinition(
                name="interview",
                steps=[StepDef(name="ask", action="elicit", prompt="Scope?", variable="scope")],
            )
        )
        executor = make_executor(router(RoutingTable(level_1=["quick", "interview"]), LEVEL=1))

        result = await executor.execute_next_step()

        assert result.waiting
        assert result.state.waiting.child == "run-1/route/1"

        executor.submit_input(0, "narrow")
        result = await executor.execute_next_step()

        assert result.completed
        assert result.state.variables["decision"]["workflow_paths"] == ["quick", "interview"]
        assert executor.store.read("run-1/route/1").variables["scope"] == "narrow"
