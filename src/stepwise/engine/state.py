# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Execution state of a workflow instance.

This module defines the ExecutionState model persisted by the state store
and the status values derived from it. The persisted record uses camelCase
keys::

    {
      "instanceId": "prd-1",
      "workflowName": "create-prd",
      "currentStepIndex": 1,
      "completed": false,
      "paused": true,
      "pausedAt": "2026-01-01T10:00:00Z",
      "variables": {"project_name": "Atlas"},
      "waiting": {"variable": "project_scale", "stepIndex": 1},
      "answeredStep": null,
      "startedAt": "2026-01-01T09:59:58Z",
      "updatedAt": "2026-01-01T10:00:00Z"
    }
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ExecutionStatus(str, Enum):
    """Status of a workflow instance, as reported in execution results."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    WAITING_FOR_INPUT = "waiting_for_input"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class WaitingMarker(BaseModel):
    """Which variable and step a suspended instance is blocked on."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    variable: str
    """Variable that receives the submitted input."""

    step_index: int = Field(ge=0)
    """Index of the suspended step."""

    child: str | None = None
    """Instance id of a nested workflow the input is forwarded to."""

    prompt: str | None = None
    """Rendered prompt shown to whoever supplies the input."""


class ExecutionState(BaseModel):
    """Durable state of one workflow instance.

    The step executor only ever holds a transient copy of this model for the
    duration of a single call; the state store owns the persisted document.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    instance_id: str
    """Workflow-instance id."""

    workflow_name: str = ""
    """Name of the workflow definition this instance executes."""

    current_step_index: int = Field(default=0, ge=0)
    """Index of the next step to execute."""

    completed: bool = False
    """True once every step has executed."""

    paused: bool = False
    """True while suspended at an elicit step or held by an operator."""

    paused_at: datetime | None = None
    """When the instance was last paused."""

    variables: dict[str, Any] = Field(default_factory=dict)
    """Variable bindings."""

    waiting: WaitingMarker | None = None
    """Present iff the instance is suspended awaiting input."""

    answered_step: int | None = None
    """Index of an elicit step whose input arrived but that has not advanced yet."""

    started_at: datetime = Field(default_factory=utcnow)
    """When the instance was created."""

    updated_at: datetime = Field(default_factory=utcnow)
    """When the instance was last persisted."""

    @property
    def status(self) -> ExecutionStatus:
        """Derive the instance status from the persisted flags."""
        if self.completed:
            return ExecutionStatus.COMPLETED
        if self.waiting is not None:
            return ExecutionStatus.WAITING_FOR_INPUT
        if self.paused:
            return ExecutionStatus.PAUSED
        return ExecutionStatus.RUNNING

    def snapshot(self) -> ExecutionState:
        """Return a deep copy that shares no mutable data with this state."""
        return self.model_copy(deep=True)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted JSON-compatible record."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ExecutionState:
        """Parse a persisted record.

        Raises:
            pydantic.ValidationError: If the record is malformed.
        """
        return cls.model_validate(record)
