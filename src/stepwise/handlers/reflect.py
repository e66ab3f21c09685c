# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Reflect handler and the ReflectionProvider contract.

The engine never calls a language model itself. A reflect step renders its
prompt and hands it to an injected ReflectionProvider; whatever the
provider returns is bound to the step's variable.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from stepwise.engine.context import StepContext
from stepwise.engine.results import Continue, StepOutcome
from stepwise.exceptions import HandlerError
from stepwise.handlers.base import ActionHandler

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef

logger = logging.getLogger(__name__)


class ReflectionProvider(ABC):
    """Abstract base class for reflection collaborators.

    Implementations typically wrap a generative-model client.
    """

    @abstractmethod
    async def reflect(self, prompt: str, variables: Mapping[str, Any]) -> Any:
        """Produce a reflection for a prompt.

        Args:
            prompt: Rendered prompt text.
            variables: Read-only snapshot of the workflow variables.

        Returns:
            A JSON-compatible value bound to the step's variable.
        """
        ...

    async def close(self) -> None:
        """Release provider resources. Default is a no-op."""


class StaticReflectionProvider(ReflectionProvider):
    """Returns canned responses; useful for tests and dry runs.

    Args:
        responses: Responses keyed by prompt text.
        default: Response for prompts without a canned answer.
    """

    def __init__(self, responses: Mapping[str, Any] | None = None, default: Any = "") -> None:
        self.responses = dict(responses or {})
        self.default = default
        self.prompts: list[str] = []

    async def reflect(self, prompt: str, variables: Mapping[str, Any]) -> Any:
        self.prompts.append(prompt)
        return self.responses.get(prompt, self.default)


class ReflectHandler(ActionHandler):
    """Delegates a reflect step to a ReflectionProvider.

    The step deadline, if any, bounds the provider call.
    """

    def __init__(self, provider: ReflectionProvider) -> None:
        self.provider = provider

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        prompt = context.param("prompt", "")
        timeout = context.time_remaining()

        try:
            if timeout is None:
                value = await self.provider.reflect(prompt, context.variables)
            else:
                value = await asyncio.wait_for(
                    self.provider.reflect(prompt, context.variables), timeout=timeout
                )
        except asyncio.TimeoutError as e:
            raise HandlerError(
                f"Reflection for step '{step.name}' exceeded its deadline",
                suggestion="Retry the step or extend the deadline",
                step_name=step.name,
                action=step.action,
                original_error=e,
            ) from e

        logger.debug("Reflection for step '%s' completed", step.name)
        return Continue(variable=context.param("variable"), value=value)
