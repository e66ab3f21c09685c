# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Tagged outcome and result types.

Handlers report one of three outcomes for a step:

- Continue: the step finished; optionally bind values and advance.
- Suspend: the step needs external input; persist a waiting marker.
- Failed: the step failed; leave persisted state untouched.

The executor turns each call into an ExecutionResult whose ``status`` is an
ExecutionStatus, so callers switch on the status instead of inspecting
error messages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from stepwise.engine.state import ExecutionState, ExecutionStatus
from stepwise.exceptions import StepwiseError


@dataclass(frozen=True)
class Continue:
    """The step completed.

    Attributes:
        variable: Variable to bind ``value`` to, if any.
        value: Value produced by the step.
        bindings: Additional variables bound in the same persist.
        message: Optional human-readable summary.
    """

    variable: str | None = None
    value: Any = None
    bindings: dict[str, Any] = field(default_factory=dict)
    message: str | None = None

    def all_bindings(self) -> dict[str, Any]:
        """Return every variable this outcome binds."""
        merged = dict(self.bindings)
        if self.variable is not None:
            merged[self.variable] = self.value
        return merged


@dataclass(frozen=True)
class Suspend:
    """The step is waiting for external input.

    Attributes:
        variable: Variable that will receive the input.
        step_index: Index of the suspended step.
        child: Instance id of a nested workflow the input belongs to.
        prompt: Rendered prompt to present to the user.
    """

    variable: str
    step_index: int
    child: str | None = None
    prompt: str | None = None


@dataclass(frozen=True)
class Failed:
    """The step failed. The error is call-scoped; the step can be retried."""

    error: StepwiseError


StepOutcome = Union[Continue, Suspend, Failed]


@dataclass(frozen=True)
class ErrorInfo:
    """Serializable description of a failure."""

    kind: str
    """Exception type name, e.g. 'HandlerError'."""

    message: str
    """Error message without location or suggestion."""

    suggestion: str | None = None
    """Optional advice for resolving the error."""

    @classmethod
    def from_exception(cls, error: BaseException) -> ErrorInfo:
        """Build from an exception."""
        if isinstance(error, StepwiseError):
            return cls(kind=error.error_type, message=error.message, suggestion=error.suggestion)
        return cls(kind=type(error).__name__, message=str(error))


@dataclass(frozen=True)
class ExecutionResult:
    """Result of a single executor call.

    Attributes:
        success: False only when the call failed.
        status: Instance status after the call.
        state: Deep-copied snapshot of the persisted state.
        error: Failure details when ``success`` is False.
        step_name: Name of the step the call acted on.
        message: Human-readable summary.
    """

    success: bool
    status: ExecutionStatus
    state: ExecutionState | None = None
    error: ErrorInfo | None = None
    step_name: str | None = None
    message: str = ""

    @property
    def completed(self) -> bool:
        """True if the instance has completed."""
        return self.status is ExecutionStatus.COMPLETED

    @property
    def waiting(self) -> bool:
        """True if the instance is suspended awaiting input."""
        return self.status is ExecutionStatus.WAITING_FOR_INPUT

    @property
    def blocked(self) -> bool:
        """True if another executor call cannot make progress on its own."""
        return self.status is not ExecutionStatus.RUNNING

    @classmethod
    def from_state(
        cls,
        state: ExecutionState,
        *,
        step_name: str | None = None,
        message: str = "",
    ) -> ExecutionResult:
        """Build a successful result reflecting the state's status."""
        return cls(
            success=True,
            status=state.status,
            state=state.snapshot(),
            step_name=step_name,
            message=message,
        )

    @classmethod
    def failure(
        cls,
        error: BaseException,
        state: ExecutionState | None,
        *,
        step_name: str | None = None,
    ) -> ExecutionResult:
        """Build a failed result carrying the unchanged state."""
        info = ErrorInfo.from_exception(error)
        label = f'Step "{step_name}" failed' if step_name else "Execution failed"
        return cls(
            success=False,
            status=ExecutionStatus.FAILED,
            state=state.snapshot() if state is not None else None,
            error=info,
            step_name=step_name,
            message=f"{label}: {info.message}",
        )
