# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Handler contract for step actions.

This module defines the ActionHandler abstract base class that built-in and
external handlers implement. Any async callable with the signature
``(step, context) -> StepOutcome`` is accepted by the registry as well.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Union

from stepwise.engine.context import StepContext
from stepwise.engine.results import StepOutcome

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef


class ActionHandler(ABC):
    """Abstract base class for step action handlers.

    A handler performs the side effect of one step and reports the outcome.
    Handlers never touch persisted state: the step executor applies the
    returned outcome in a single atomic persist.

    Example:
        >>> class ShoutHandler(ActionHandler):
        ...     async def handle(self, step, context):
        ...         return Continue(variable="shout", value=context.param("message").upper())
    """

    @abstractmethod
    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        """Execute a step.

        Args:
            step: Step definition being executed.
            context: Resolved parameters and a read-only variable snapshot.

        Returns:
            Continue, Suspend or Failed.
        """
        ...


HandlerCallable = Callable[["StepDef", StepContext], Awaitable[StepOutcome]]
"""Plain async callables accepted in place of an ActionHandler."""

Handler = Union[ActionHandler, HandlerCallable]

__all__ = ["ActionHandler", "Handler", "HandlerCallable", "StepContext"]
