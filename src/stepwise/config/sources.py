# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Definition sources for resolving nested workflow references.

Sub-workflow and route steps refer to other workflows by reference. A
DefinitionSource turns such a reference into a loaded WorkflowDefinition.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from pathlib import Path

from stepwise.config.loader import DefinitionLoader
from stepwise.config.schema import WorkflowDefinition
from stepwise.exceptions import DefinitionError

logger = logging.getLogger(__name__)

WORKFLOW_SUFFIXES = (".workflow.yaml", ".workflow.yml", ".yaml", ".yml")


class DefinitionSource(ABC):
    """Resolves workflow references to loaded definitions."""

    @abstractmethod
    def get(self, reference: str) -> WorkflowDefinition:
        """Return the definition for a reference.

        Raises:
            DefinitionError: If the reference cannot be resolved or loaded.
        """
        ...


class InMemoryDefinitionSource(DefinitionSource):
    """Definitions registered up front, looked up by reference or name.

    Example:
        >>> source = InMemoryDefinitionSource()
        >>> source.add(definition)
        >>> source.add(other, reference="flows/other.workflow.yaml")
        >>> source.get("flows/other.workflow.yaml").name
        'other'
    """

    def __init__(self, definitions: list[WorkflowDefinition] | None = None) -> None:
        self._definitions: dict[str, WorkflowDefinition] = {}
        for definition in definitions or []:
            self.add(definition)

    def add(self, definition: WorkflowDefinition, reference: str | None = None) -> None:
        """Register a definition under its name and an optional reference."""
        self._definitions[definition.name] = definition
        if reference is not None:
            self._definitions[reference] = definition

    def get(self, reference: str) -> WorkflowDefinition:
        try:
            return self._definitions[reference]
        except KeyError:
            raise DefinitionError(
                f"Unknown workflow reference: {reference}",
                suggestion=f"Available: {', '.join(sorted(self._definitions)) or 'none'}",
            ) from None


class DirectoryDefinitionSource(DefinitionSource):
    """Loads definitions from YAML files below a base directory.

    A reference may be a path (absolute, or relative to the base directory)
    or a bare workflow id, which is tried with the usual suffixes
    (``<id>.workflow.yaml``, ``<id>.yaml``, ...). Loaded definitions are
    cached per resolved path.
    """

    def __init__(self, base_dir: str | Path, loader: DefinitionLoader | None = None) -> None:
        self.base_dir = Path(base_dir)
        self._loader = loader or DefinitionLoader()
        self._cache: dict[Path, WorkflowDefinition] = {}

    def resolve_path(self, reference: str) -> Path:
        """Resolve a reference to an existing definition file.

        Raises:
            DefinitionError: If no matching file exists.
        """
        candidate = Path(reference)
        candidates = [candidate] if candidate.is_absolute() else [self.base_dir / candidate]
        candidates.extend(self.base_dir / f"{reference}{suffix}" for suffix in WORKFLOW_SUFFIXES)

        for path in candidates:
            if path.is_file():
                return path.resolve()

        raise DefinitionError(
            f"Workflow not found: {reference}",
            suggestion=f"Place '{reference}.workflow.yaml' in {self.base_dir} "
            "or reference the file by path",
        )

    def get(self, reference: str) -> WorkflowDefinition:
        path = self.resolve_path(reference)
        if path not in self._cache:
            logger.debug("Loading workflow definition %s", path)
            self._cache[path] = self._loader.load(path)
        return self._cache[path]
