"""Unit tests for ActionHandlerRegistry.

Tests cover:
- Registering, replacing and unregistering handlers
- Dispatch to ActionHandler instances and plain callables
- Uniform wrapping of handler exceptions into Failed
- Invalid handler return values
- Default registry wiring
"""

import asyncio

import pytest

from stepwise.config.schema import StepDef
from stepwise.config.settings import EngineSettings
from stepwise.config.sources import InMemoryDefinitionSource
from stepwise.engine.context import StepContext
from stepwise.engine.results import Continue, Failed, Suspend
from stepwise.engine.store import InMemoryStateStore
from stepwise.exceptions import HandlerError, TemplateError
from stepwise.handlers.base import ActionHandler
from stepwise.handlers.reflect import StaticReflectionProvider
from stepwise.handlers.registry import ActionHandlerRegistry, create_default_registry

STEP = StepDef(name="greet", action="display", message="hi")
CONTEXT = StepContext(
    instance_id="run-1", workflow_name="w", step_index=0, params={"message": "hi"}
)


class EchoHandler(ActionHandler):
    async def handle(self, step, context):
        return Continue(variable="echo", value=context.param("message"))


class TestRegistration:
    """Tests for handler registration."""

    def test_register_and_has(self) -> None:
        """Test a registered kind is reported."""
        registry = ActionHandlerRegistry()
        registry.register("display", EchoHandler())

        assert registry.has("display")
        assert not registry.has("elicit")
        assert registry.kinds == ["display"]

    def test_unknown_kind_rejected(self) -> None:
        """Test kinds outside the closed set are rejected."""
        with pytest.raises(ValueError, match="Unknown action kind 'teleport'"):
            ActionHandlerRegistry().register("teleport", EchoHandler())

    def test_non_callable_rejected(self) -> None:
        """Test handlers must be ActionHandlers or callables."""
        with pytest.raises(TypeError):
            ActionHandlerRegistry().register("display", "not a handler")

    def test_unregister(self) -> None:
        """Test unregister reports whether a handler was removed."""
        registry = ActionHandlerRegistry()
        registry.register("display", EchoHandler())

        assert registry.unregister("display") is True
        assert registry.unregister("display") is False

    @pytest.mark.asyncio
    async def test_register_replaces(self) -> None:
        """Test registering a kind twice keeps the latest handler."""
        registry = ActionHandlerRegistry()
        registry.register("display", EchoHandler())

        async def other(step, context):
            return Continue(message="other")

        registry.register("display", other)

        outcome = await registry.dispatch(STEP, CONTEXT)
        assert outcome.message == "other"


class TestDispatch:
    """Tests for ActionHandlerRegistry.dispatch."""

    @pytest.mark.asyncio
    async def test_action_handler(self) -> None:
        """Test dispatch to an ActionHandler."""
        registry = ActionHandlerRegistry()
        registry.register("display", EchoHandler())

        outcome = await registry.dispatch(STEP, CONTEXT)

        assert outcome == Continue(variable="echo", value="hi")

    @pytest.mark.asyncio
    async def test_async_callable(self) -> None:
        """Test dispatch to an async function."""
        registry = ActionHandlerRegistry()

        async def suspend(step, context):
            return Suspend(variable="x", step_index=context.step_index)

        registry.register("display", suspend)

        assert await registry.dispatch(STEP, CONTEXT) == Suspend(variable="x", step_index=0)

    @pytest.mark.asyncio
    async def test_sync_callable(self) -> None:
        """Test dispatch to a plain function."""
        registry = ActionHandlerRegistry()
        registry.register("display", lambda step, context: Continue(message="sync"))

        outcome = await registry.dispatch(STEP, CONTEXT)

        assert outcome.message == "sync"

    @pytest.mark.asyncio
    async def test_missing_handler(self) -> None:
        """Test dispatch without a handler returns Failed."""
        outcome = await ActionHandlerRegistry().dispatch(STEP, CONTEXT)

        assert isinstance(outcome, Failed)
        assert isinstance(outcome.error, HandlerError)
        assert outcome.error.step_name == "greet"

    @pytest.mark.asyncio
    async def test_exception_wrapped(self) -> None:
        """Test arbitrary exceptions become Failed(HandlerError)."""
        registry = ActionHandlerRegistry()
        error = ConnectionError("refused")

        async def broken(step, context):
            raise error

        registry.register("display", broken)

        outcome = await registry.dispatch(STEP, CONTEXT)

        assert isinstance(outcome, Failed)
        assert outcome.error.message == "ConnectionError: refused"
        assert outcome.error.original_error is error
        assert outcome.error.action == "display"

    @pytest.mark.asyncio
    async def test_stepwise_error_keeps_suggestion(self) -> None:
        """Test engine errors keep their message and suggestion."""
        registry = ActionHandlerRegistry()

        async def broken(step, context):
            raise TemplateError("Template not found: x.md", suggestion="Add x.md")

        registry.register("display", broken)

        outcome = await registry.dispatch(STEP, CONTEXT)

        assert outcome.error.message == "Template not found: x.md"
        assert outcome.error.suggestion == "Add x.md"

    @pytest.mark.asyncio
    async def test_failed_passes_through(self) -> None:
        """Test a Failed outcome returned by a handler is kept."""
        registry = ActionHandlerRegistry()
        failed = Failed(HandlerError("nope"))
        registry.register("display", lambda step, context: failed)

        assert await registry.dispatch(STEP, CONTEXT) is failed

    @pytest.mark.asyncio
    async def test_invalid_return_value(self) -> None:
        """Test a handler returning something else fails."""
        registry = ActionHandlerRegistry()
        registry.register("display", lambda step, context: {"ok": True})

        outcome = await registry.dispatch(STEP, CONTEXT)

        assert isinstance(outcome, Failed)
        assert "returned dict" in outcome.error.message

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self) -> None:
        """Test cancellation is not turned into a failure."""
        registry = ActionHandlerRegistry()

        async def cancelled(step, context):
            raise asyncio.CancelledError()

        registry.register("display", cancelled)

        with pytest.raises(asyncio.CancelledError):
            await registry.dispatch(STEP, CONTEXT)


class TestDefaultRegistry:
    """Tests for create_default_registry."""

    def test_minimal(self) -> None:
        """Test the in-engine handlers are always registered."""
        registry = create_default_registry()

        assert registry.kinds == ["display", "elicit", "load_state_machine"]

    def test_fully_wired(self, tmp_path) -> None:
        """Test every action kind is registered with all collaborators."""
        registry = create_default_registry(
            settings=EngineSettings(output_dir=tmp_path),
            source=InMemoryDefinitionSource(),
            store=InMemoryStateStore(),
            reflection_provider=StaticReflectionProvider(),
        )

        assert registry.kinds == sorted(
            [
                "display",
                "elicit",
                "load_state_machine",
                "template",
                "reflect",
                "workflow",
                "sub-workflow",
                "route",
            ]
        )

    @pytest.mark.asyncio
    async def test_display_sink(self) -> None:
        """Test display messages reach the sink."""
        shown = []
        registry = create_default_registry(display_sink=shown.append)

        await registry.dispatch(STEP, CONTEXT)

        assert shown == ["hi"]
