# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Configuration module for Stepwise.

This module handles YAML parsing, Pydantic schema validation, environment
variable resolution, definition sources and engine settings.
"""

from stepwise.config.loader import (
    DefinitionLoader,
    load_definition,
    load_definition_string,
    resolve_env_vars,
)
from stepwise.config.schema import (
    ACTION_KINDS,
    ActionKind,
    RoutingPath,
    RoutingTable,
    StepDef,
    WorkflowDefinition,
    WorkflowFile,
)
from stepwise.config.settings import EngineSettings
from stepwise.config.sources import (
    DefinitionSource,
    DirectoryDefinitionSource,
    InMemoryDefinitionSource,
)
from stepwise.config.validator import validate_workflow_definition

__all__ = [
    # Loader
    "DefinitionLoader",
    "load_definition",
    "load_definition_string",
    "resolve_env_vars",
    # Schema models
    "ACTION_KINDS",
    "ActionKind",
    "RoutingPath",
    "RoutingTable",
    "StepDef",
    "WorkflowDefinition",
    "WorkflowFile",
    # Settings
    "EngineSettings",
    # Sources
    "DefinitionSource",
    "DirectoryDefinitionSource",
    "InMemoryDefinitionSource",
    # Validator
    "validate_workflow_definition",
]
