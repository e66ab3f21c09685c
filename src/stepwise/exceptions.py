# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Exception hierarchy for Stepwise.

This module defines all custom exceptions used throughout the engine.
All exceptions inherit from StepwiseError and support optional suggestions
to help users resolve issues.

Suspension at an elicit step is deliberately absent from this module: waiting
for input is a result status, not an error.
"""

from __future__ import annotations


class StepwiseError(Exception):
    """Base exception for all Stepwise errors.

    Supports an optional file path and suggestion to help users understand
    what went wrong and how to fix it.

    Attributes:
        suggestion: Optional actionable advice for resolving the error.
        file_path: Optional path to the file where the error occurred.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
    ) -> None:
        """Initialize a StepwiseError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
        """
        self.suggestion = suggestion
        self.file_path = file_path
        super().__init__(message)

    @property
    def message(self) -> str:
        """Return the bare error message without location or suggestion."""
        return self.args[0] if self.args else ""

    def __str__(self) -> str:
        """Format the error message with location and suggestion."""
        msg = self.message

        if self.file_path:
            msg += f"\n\n📍 Location: File: {self.file_path}"

        if self.suggestion:
            msg += f"\n\n💡 Suggestion: {self.suggestion}"
        return msg

    @property
    def error_type(self) -> str:
        """Return the type name for display purposes."""
        return self.__class__.__name__


class DefinitionError(StepwiseError):
    """Raised when a workflow definition is malformed.

    This includes invalid YAML, missing required fields, unknown action
    kinds, and steps missing their action-specific parameters. A definition
    error is fatal at load time: no instance is ever created from it.

    Attributes:
        field_path: Optional path to the invalid field (e.g., 'steps.2.prompt').
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        field_path: str | None = None,
    ) -> None:
        """Initialize a DefinitionError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the file where the error occurred.
            field_path: Optional path to the invalid definition field.
        """
        self.field_path = field_path

        if suggestion is None:
            suggestion = self._generate_suggestion(message, field_path)

        super().__init__(message, suggestion, file_path)

    def _generate_suggestion(self, message: str, field_path: str | None) -> str | None:
        """Generate helpful suggestions based on error message and field."""
        msg_lower = message.lower()

        if "action" in msg_lower and ("unknown" in msg_lower or "input should be" in msg_lower):
            return (
                "Use one of: display, elicit, reflect, template, workflow, "
                "sub-workflow, route, load_state_machine"
            )

        if "required" in msg_lower or "missing" in msg_lower:
            return f"Add the missing required field{' at ' + field_path if field_path else ''}"

        if "type" in msg_lower or "validation" in msg_lower:
            return "Check the field type matches the expected schema type"

        return None

    def __str__(self) -> str:
        """Format the error message with field path, location and suggestion."""
        msg = self.message

        if self.field_path:
            msg += f"\n\n📋 Field: {self.field_path}"

        if self.file_path:
            msg += f"\n\n📍 Location: File: {self.file_path}"

        if self.suggestion:
            msg += f"\n\n💡 Suggestion: {self.suggestion}"
        return msg


class NotFoundError(StepwiseError):
    """Raised when no execution state exists for an instance id."""

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        instance_id: str | None = None,
    ) -> None:
        """Initialize a NotFoundError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            instance_id: The workflow-instance id that was looked up.
        """
        self.instance_id = instance_id
        if suggestion is None:
            suggestion = "Start the workflow first, or check the instance id"
        super().__init__(message, suggestion)


class InvalidTransitionError(StepwiseError):
    """Raised when a control operation is not valid in the current state.

    Examples are submitting input without a matching waiting marker,
    pausing a completed instance, or resuming an instance that is waiting
    for input.

    Attributes:
        instance_id: The workflow-instance id.
        current_status: Status of the instance when the transition was attempted.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        instance_id: str | None = None,
        current_status: str | None = None,
    ) -> None:
        """Initialize an InvalidTransitionError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            instance_id: The workflow-instance id.
            current_status: Status of the instance at the time of the attempt.
        """
        self.instance_id = instance_id
        self.current_status = current_status
        super().__init__(message, suggestion)


class HandlerError(StepwiseError):
    """Raised when a single action's execution fails.

    The step index is left unchanged, so the failing call can be retried.

    Attributes:
        step_name: Name of the step whose handler failed.
        action: Action kind of the step.
        original_error: The exception raised by the handler, if any.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        step_name: str | None = None,
        action: str | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        """Initialize a HandlerError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            step_name: Name of the step whose handler failed.
            action: Action kind of the step.
            original_error: The exception raised by the handler, if any.
        """
        self.step_name = step_name
        self.action = action
        self.original_error = original_error
        super().__init__(message, suggestion)


class PersistenceError(StepwiseError):
    """Raised when the execution state store fails to read or write.

    State integrity is preserved by the store's atomic-write contract: a
    failed write leaves the previous document in place.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        instance_id: str | None = None,
    ) -> None:
        """Initialize a PersistenceError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the state document.
            instance_id: The workflow-instance id being persisted.
        """
        self.instance_id = instance_id
        if suggestion is None:
            suggestion = "Check that the state directory exists and is writable"
        super().__init__(message, suggestion, file_path)


class CycleError(StepwiseError):
    """Raised when nested workflow references form a cycle.

    Attributes:
        cycle: Workflow names along the cycle, ending with the repeated name.
    """

    def __init__(
        self,
        message: str,
        *,
        cycle: list[str],
        suggestion: str | None = None,
    ) -> None:
        """Initialize a CycleError.

        Args:
            message: The error message describing what went wrong.
            cycle: Workflow names along the cycle, ending with the repeated name.
            suggestion: Optional advice for resolving the error.
        """
        self.cycle = cycle
        if suggestion is None:
            suggestion = (
                f"Remove the reference from '{cycle[-2]}' back to '{cycle[-1]}'"
                if len(cycle) >= 2
                else "Remove the self-reference from the workflow"
            )
        super().__init__(message, suggestion)


class TemplateError(StepwiseError):
    """Raised when Jinja2 template rendering fails.

    This includes undefined variables, syntax errors, and missing template
    files.
    """

    def __init__(
        self,
        message: str,
        suggestion: str | None = None,
        file_path: str | None = None,
        undefined_variable: str | None = None,
    ) -> None:
        """Initialize a TemplateError.

        Args:
            message: The error message describing what went wrong.
            suggestion: Optional advice for resolving the error.
            file_path: Optional path to the template file.
            undefined_variable: Optional name of the undefined variable.
        """
        self.undefined_variable = undefined_variable

        if suggestion is None:
            if undefined_variable:
                suggestion = (
                    f"Variable '{undefined_variable}' is not defined. "
                    "Bind it in an earlier step or in the workflow's default variables"
                )
            elif "syntax" in message.lower():
                suggestion = (
                    "Check Jinja2 template syntax: ensure {{ }} are balanced "
                    "and filters use | correctly"
                )

        super().__init__(message, suggestion, file_path)


class ConditionError(StepwiseError):
    """Raised when a guard or routing condition cannot be evaluated.

    Attributes:
        condition: The original condition expression.
    """

    def __init__(
        self,
        message: str,
        condition: str,
        suggestion: str | None = None,
    ) -> None:
        """Initialize a ConditionError.

        Args:
            message: The error message describing what went wrong.
            condition: The original condition expression.
            suggestion: Optional advice for resolving the error.
        """
        self.condition = condition
        super().__init__(message, suggestion)
