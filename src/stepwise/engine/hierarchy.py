# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Hierarchy resolver for nested workflows.

Builds the tree of workflows reachable through workflow, sub-workflow and
route steps, for monitoring and display. Expansion is bounded by a maximum
depth, and a workflow that appears twice on the current expansion path is
reported as a CycleError instead of recursing forever.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from stepwise.exceptions import CycleError

if TYPE_CHECKING:
    from stepwise.config.schema import WorkflowDefinition
    from stepwise.config.sources import DefinitionSource

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 10


@dataclass
class HierarchyNode:
    """One workflow in the hierarchy tree."""

    name: str
    """Workflow name."""

    step_count: int
    """Number of steps in the workflow."""

    reference: str | None = None
    """Reference the parent used to invoke this workflow (None for the root)."""

    step_name: str | None = None
    """Name of the parent step invoking this workflow (None for the root)."""

    children: list[HierarchyNode] = field(default_factory=list)
    """Nested workflows in step order."""

    truncated: bool = False
    """True if nested workflows exist below this node but exceed the depth limit."""

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict."""
        data: dict[str, Any] = {
            "name": self.name,
            "step_count": self.step_count,
            "children": [child.to_dict() for child in self.children],
        }
        if self.reference is not None:
            data["reference"] = self.reference
        if self.step_name is not None:
            data["step_name"] = self.step_name
        if self.truncated:
            data["truncated"] = True
        return data

    def walk(self):
        """Yield this node and all descendants, depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    @property
    def total_steps(self) -> int:
        """Steps in this workflow and every nested workflow."""
        return sum(node.step_count for node in self.walk())


class HierarchyResolver:
    """Expands nested workflow references into a HierarchyNode tree.

    Example:
        >>> resolver = HierarchyResolver(source, max_depth=5)
        >>> tree = resolver.resolve(definition)
        >>> [child.name for child in tree.children]
        ['prd', 'architecture']
    """

    def __init__(self, source: DefinitionSource, max_depth: int = DEFAULT_MAX_DEPTH) -> None:
        if max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        self.source = source
        self.max_depth = max_depth

    def resolve(self, definition: WorkflowDefinition, max_depth: int | None = None) -> HierarchyNode:
        """Build the hierarchy tree rooted at a definition.

        Args:
            definition: Root workflow definition.
            max_depth: Overrides the resolver's depth limit for this call.

        Returns:
            The root HierarchyNode.

        Raises:
            CycleError: If a workflow is reachable from itself.
            DefinitionError: If a nested reference cannot be resolved.
        """
        limit = self.max_depth if max_depth is None else max_depth
        root = HierarchyNode(name=definition.name, step_count=definition.step_count)
        self._expand(root, definition, [definition.name], limit)
        return root

    def _expand(
        self,
        node: HierarchyNode,
        definition: WorkflowDefinition,
        path: list[str],
        limit: int,
    ) -> None:
        nested = [
            (step.name, reference)
            for step in definition.steps
            for reference in step.nested_references()
        ]
        if not nested:
            return

        if len(path) > limit:
            node.truncated = True
            return

        for step_name, reference in nested:
            child_def = self.source.get(reference)
            if child_def.name in path:
                start = path.index(child_def.name)
                cycle = [*path[start:], child_def.name]
                raise CycleError(
                    f"Circular workflow reference: {' -> '.join(cycle)}",
                    cycle=cycle,
                )

            child = HierarchyNode(
                name=child_def.name,
                step_count=child_def.step_count,
                reference=reference,
                step_name=step_name,
            )
            node.children.append(child)
            path.append(child_def.name)
            try:
                self._expand(child, child_def, path, limit)
            finally:
                path.pop()
