# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Action handlers for Stepwise.

This module provides the handler contract, the registry steps are
dispatched through, and the built-in handlers for every action kind.
"""

from stepwise.handlers.base import ActionHandler, Handler
from stepwise.handlers.builtin import (
    DisplayHandler,
    ElicitHandler,
    LoadStateMachineHandler,
    parse_status_file,
)
from stepwise.handlers.nested import RouteHandler, WorkflowHandler
from stepwise.handlers.reflect import ReflectHandler, ReflectionProvider, StaticReflectionProvider
from stepwise.handlers.registry import ActionHandlerRegistry, create_default_registry
from stepwise.handlers.template import TemplateHandler

__all__ = [
    "ActionHandler",
    "ActionHandlerRegistry",
    "DisplayHandler",
    "ElicitHandler",
    "Handler",
    "LoadStateMachineHandler",
    "ReflectHandler",
    "ReflectionProvider",
    "RouteHandler",
    "StaticReflectionProvider",
    "TemplateHandler",
    "WorkflowHandler",
    "create_default_registry",
    "parse_status_file",
]
