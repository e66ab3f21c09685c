# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Action handler registry.

This module provides the ActionHandlerRegistry that maps action kinds to
handlers, and create_default_registry which wires up the built-in handlers.
The registry performs no workflow logic of its own: it looks up the handler
for a step and turns whatever the handler raises into a Failed outcome.
"""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from stepwise.config.schema import ACTION_KINDS
from stepwise.engine.context import StepContext
from stepwise.engine.results import Continue, Failed, StepOutcome, Suspend
from stepwise.exceptions import HandlerError, StepwiseError
from stepwise.handlers.base import ActionHandler, Handler
from stepwise.handlers.builtin import DisplayHandler, ElicitHandler, LoadStateMachineHandler
from stepwise.handlers.nested import RouteHandler, WorkflowHandler
from stepwise.handlers.reflect import ReflectHandler, ReflectionProvider
from stepwise.handlers.template import TemplateHandler

if TYPE_CHECKING:
    from collections.abc import Callable

    from stepwise.config.schema import StepDef
    from stepwise.config.settings import EngineSettings
    from stepwise.config.sources import DefinitionSource
    from stepwise.engine.store import StateStore

logger = logging.getLogger(__name__)


class ActionHandlerRegistry:
    """Maps action kinds to handlers.

    Example:
        >>> registry = ActionHandlerRegistry()
        >>> registry.register("display", DisplayHandler())
        >>> outcome = await registry.dispatch(step, context)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def register(self, kind: str, handler: Handler) -> None:
        """Register a handler for an action kind, replacing any existing one.

        Raises:
            ValueError: If the kind is not a known action kind.
            TypeError: If the handler is not an ActionHandler or callable.
        """
        if kind not in ACTION_KINDS:
            raise ValueError(
                f"Unknown action kind '{kind}'. Valid kinds: {', '.join(ACTION_KINDS)}"
            )
        if not isinstance(handler, ActionHandler) and not callable(handler):
            raise TypeError(f"Handler for '{kind}' must be an ActionHandler or async callable")
        self._handlers[kind] = handler

    def unregister(self, kind: str) -> bool:
        """Remove the handler for an action kind.

        Returns:
            True if a handler was removed.
        """
        return self._handlers.pop(kind, None) is not None

    def has(self, kind: str) -> bool:
        """True if a handler is registered for the action kind."""
        return kind in self._handlers

    @property
    def kinds(self) -> list[str]:
        """Registered action kinds, sorted."""
        return sorted(self._handlers)

    async def dispatch(self, step: StepDef, context: StepContext) -> StepOutcome:
        """Run the handler registered for a step's action kind.

        Never raises for handler failures: exceptions and invalid return
        values are wrapped into ``Failed(HandlerError)``. Cancellation is
        propagated.

        Args:
            step: Step to execute.
            context: Context passed to the handler.

        Returns:
            The handler's outcome.
        """
        handler = self._handlers.get(step.action)
        if handler is None:
            return Failed(
                HandlerError(
                    f"No handler registered for action '{step.action}'",
                    suggestion=f"Register a handler for '{step.action}' before running this workflow",
                    step_name=step.name,
                    action=step.action,
                )
            )

        try:
            if isinstance(handler, ActionHandler):
                outcome = await handler.handle(step, context)
            else:
                outcome = handler(step, context)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
        except StepwiseError as e:
            logger.debug("Handler for step '%s' raised %s", step.name, e.error_type)
            return Failed(
                HandlerError(
                    e.message,
                    suggestion=e.suggestion,
                    step_name=step.name,
                    action=step.action,
                    original_error=e,
                )
            )
        except Exception as e:
            logger.debug("Handler for step '%s' raised", step.name, exc_info=True)
            return Failed(
                HandlerError(
                    f"{type(e).__name__}: {e}",
                    step_name=step.name,
                    action=step.action,
                    original_error=e,
                )
            )

        if not isinstance(outcome, (Continue, Suspend, Failed)):
            return Failed(
                HandlerError(
                    f"Handler for action '{step.action}' returned "
                    f"{type(outcome).__name__}, expected Continue, Suspend or Failed",
                    step_name=step.name,
                    action=step.action,
                )
            )
        return outcome


def create_default_registry(
    *,
    settings: EngineSettings | None = None,
    source: DefinitionSource | None = None,
    store: StateStore | None = None,
    reflection_provider: ReflectionProvider | None = None,
    display_sink: Callable[[str], None] | None = None,
) -> ActionHandlerRegistry:
    """Create a registry with the built-in handlers.

    display, elicit and load_state_machine are always registered. template
    is registered when settings are given, reflect when a reflection
    provider is given, and workflow, sub-workflow and route when both a
    definition source and a state store are given.

    Args:
        settings: Engine settings supplying template, output and depth limits.
        source: Definition source used to load nested workflows.
        store: State store shared with nested workflow executors.
        reflection_provider: Collaborator answering reflect prompts.
        display_sink: Callable receiving rendered display messages.

    Returns:
        A populated ActionHandlerRegistry.
    """
    registry = ActionHandlerRegistry()
    base_dir = Path(settings.output_dir) if settings is not None else None

    registry.register("display", DisplayHandler(sink=display_sink))
    registry.register("elicit", ElicitHandler())
    registry.register("load_state_machine", LoadStateMachineHandler(base_dir=base_dir))

    if settings is not None:
        registry.register(
            "template",
            TemplateHandler(
                templates_dir=settings.templates_dir,
                output_dir=settings.output_dir,
            ),
        )

    if reflection_provider is not None:
        registry.register("reflect", ReflectHandler(reflection_provider))

    if source is not None and store is not None:
        limits = {}
        if settings is not None:
            limits = {
                "max_depth": settings.max_hierarchy_depth,
                "max_steps": settings.max_steps_per_run,
            }
        workflow_handler = WorkflowHandler(source, store, registry, **limits)
        registry.register("workflow", workflow_handler)
        registry.register("sub-workflow", workflow_handler)
        registry.register("route", RouteHandler(source, store, registry, **limits))

    logger.debug("Registered handlers: %s", ", ".join(registry.kinds))
    return registry
