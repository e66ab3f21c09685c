# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""YAML workflow definition loader with environment variable resolution.

This module handles loading YAML workflow definition files, resolving
environment variables, and parsing them into typed Pydantic models.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from stepwise.config.schema import WorkflowDefinition
from stepwise.exceptions import DefinitionError

# Pattern to match ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

# Top-level keys that make up a legacy definition without a 'workflow' wrapper
_LEGACY_KEYS = {"name", "steps"}


def resolve_env_vars(value: str, max_depth: int = 10) -> str:
    """Resolve ${ENV:-default} patterns in strings.

    Only names that are set in the environment, or that carry a default, are
    substituted. Other ``${NAME}`` references are left in place because
    workflow definitions use the same syntax for run-time variables in
    guard conditions.

    Args:
        value: The string potentially containing env var references.
        max_depth: Maximum recursion depth to prevent infinite loops.

    Returns:
        The string with environment variables resolved.

    Raises:
        DefinitionError: If the recursion limit is exceeded.
    """
    if max_depth <= 0:
        raise DefinitionError(
            f"Maximum recursion depth exceeded while resolving environment variables in: {value}",
            suggestion="Check for circular references in your environment variables.",
        )

    def replace_env_var(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default_value is not None:
            return default_value
        return match.group(0)

    result = ENV_VAR_PATTERN.sub(replace_env_var, value)

    if result != value and ENV_VAR_PATTERN.search(result):
        return resolve_env_vars(result, max_depth - 1)

    return result


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve environment variables in a data structure."""
    if isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    elif isinstance(data, str):
        return resolve_env_vars(data)
    else:
        return data


def _to_plain(data: Any) -> Any:
    """Convert ruamel.yaml containers into plain dicts and lists."""
    if isinstance(data, dict):
        return {str(k): _to_plain(v) for k, v in data.items()}
    if isinstance(data, list):
        return [_to_plain(item) for item in data]
    return data


class DefinitionLoader:
    """Loads and validates workflow definitions from YAML files.

    This class handles:
    - YAML parsing with line number tracking for error messages
    - Environment variable resolution
    - Pydantic schema validation
    - Legacy definitions without a top-level ``workflow`` mapping
    """

    def __init__(self) -> None:
        """Initialize the loader with a safe ruamel.yaml parser."""
        self._yaml = YAML(typ="safe")

    def load(self, path: str | Path) -> WorkflowDefinition:
        """Load a workflow definition from a YAML file.

        Args:
            path: Path to the YAML definition file.

        Returns:
            A validated WorkflowDefinition.

        Raises:
            DefinitionError: If the file cannot be read, contains invalid
                YAML syntax, or fails schema validation.
        """
        path = Path(path)

        if not path.exists():
            raise DefinitionError(
                f"Workflow file not found: {path}",
                suggestion="Check that the file path is correct and the file exists.",
            )

        if not path.is_file():
            raise DefinitionError(
                f"Path is not a file: {path}",
                suggestion="Provide a path to a YAML file, not a directory.",
            )

        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            raise DefinitionError(
                f"Failed to read workflow file '{path}': {e}",
                suggestion="Check file permissions and ensure the file is readable.",
            ) from e

        return self.load_string(content, source_path=path)

    def load_string(self, content: str, source_path: Path | None = None) -> WorkflowDefinition:
        """Load a workflow definition from a YAML string.

        Args:
            content: The YAML content as a string.
            source_path: Optional path for error messages.

        Returns:
            A validated WorkflowDefinition.

        Raises:
            DefinitionError: If the YAML is invalid or fails validation.
        """
        source = str(source_path) if source_path else "<string>"

        try:
            data = self._yaml.load(content)
        except YAMLError as e:
            line_info = ""
            if hasattr(e, "problem_mark") and e.problem_mark is not None:
                mark = e.problem_mark
                line_info = f" at line {mark.line + 1}, column {mark.column + 1}"  # type: ignore[union-attr]

            raise DefinitionError(
                f"Invalid YAML syntax in '{source}'{line_info}: {e}",
                suggestion="Check the YAML syntax. Common issues include incorrect "
                "indentation, missing colons, or unquoted special characters.",
                file_path=source,
            ) from e

        if data is None:
            raise DefinitionError(
                f"Empty workflow file: {source}",
                suggestion="Add a 'workflow' mapping with name, description and steps.",
                file_path=source,
            )

        if not isinstance(data, dict):
            raise DefinitionError(
                f"Invalid definition format in '{source}': "
                f"expected a mapping, got {type(data).__name__}",
                suggestion="Ensure the YAML file contains a 'workflow' mapping.",
                file_path=source,
            )

        data = _resolve_env_vars_recursive(_to_plain(data))

        if "workflow" in data and isinstance(data["workflow"], dict):
            data = data["workflow"]
        elif not _LEGACY_KEYS <= data.keys():
            raise DefinitionError(
                f"Invalid workflow structure in '{source}': missing 'workflow' mapping",
                file_path=source,
                field_path="workflow",
            )

        return self._validate(data, source)

    def _validate(self, data: dict[str, Any], source: str) -> WorkflowDefinition:
        """Validate definition data against the Pydantic schema.

        Raises:
            DefinitionError: If the data fails schema validation.
        """
        try:
            return WorkflowDefinition.model_validate(data)
        except PydanticValidationError as e:
            formatted_errors: list[str] = []
            first_loc: str | None = None
            for err in e.errors():
                loc = ".".join(str(x) for x in err.get("loc", ()))
                if first_loc is None and loc:
                    first_loc = loc
                formatted_errors.append(f"  - {loc}: {err.get('msg', 'Unknown error')}")
            error_msg = "\n".join(formatted_errors) or str(e)

            raise DefinitionError(
                f"Workflow validation failed in '{source}':\n{error_msg}",
                file_path=source,
                field_path=first_loc,
            ) from e


def load_definition(path: str | Path) -> WorkflowDefinition:
    """Convenience function to load a workflow definition file.

    Raises:
        DefinitionError: If loading or validation fails.
    """
    return DefinitionLoader().load(path)


def load_definition_string(content: str, source_path: Path | None = None) -> WorkflowDefinition:
    """Convenience function to load a workflow definition from a string.

    Raises:
        DefinitionError: If loading or validation fails.
    """
    return DefinitionLoader().load_string(content, source_path)
