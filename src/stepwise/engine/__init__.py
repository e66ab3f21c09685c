# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Workflow execution engine for Stepwise.

This module contains the execution state model, state stores, the step
executor, the hierarchy resolver and the background worker. The control
surface lives in ``stepwise.engine.service``.
"""

from stepwise.engine.context import ParameterResolver, StepContext
from stepwise.engine.executor import StepExecutor
from stepwise.engine.hierarchy import HierarchyNode, HierarchyResolver
from stepwise.engine.results import (
    Continue,
    ErrorInfo,
    ExecutionResult,
    Failed,
    StepOutcome,
    Suspend,
)
from stepwise.engine.state import ExecutionState, ExecutionStatus, WaitingMarker
from stepwise.engine.store import FileStateStore, InMemoryStateStore, StateStore
from stepwise.engine.worker import WorkflowRunner, WorkflowWorker

__all__ = [
    "Continue",
    "ErrorInfo",
    "ExecutionResult",
    "ExecutionState",
    "ExecutionStatus",
    "Failed",
    "FileStateStore",
    "HierarchyNode",
    "HierarchyResolver",
    "InMemoryStateStore",
    "ParameterResolver",
    "StateStore",
    "StepContext",
    "StepExecutor",
    "StepOutcome",
    "Suspend",
    "WaitingMarker",
    "WorkflowRunner",
    "WorkflowWorker",
]
