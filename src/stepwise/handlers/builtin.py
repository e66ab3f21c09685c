# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""In-engine handlers: display, elicit and load_state_machine.

None of these handlers call out to external services. Elicit never reads
input itself; it only reports a suspension, and the input arrives later
through the executor's submit_input.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from stepwise.engine.context import StepContext
from stepwise.engine.results import Continue, StepOutcome, Suspend
from stepwise.exceptions import HandlerError
from stepwise.handlers.base import ActionHandler

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef

logger = logging.getLogger(__name__)


class DisplayHandler(ActionHandler):
    """Shows a message and continues.

    Args:
        sink: Callable receiving the rendered message. Messages are only
            logged when no sink is given.
    """

    def __init__(self, sink: Callable[[str], None] | None = None) -> None:
        self.sink = sink

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        message = context.param("message", "")
        logger.info("[%s] %s", context.instance_id, message)
        if self.sink is not None:
            self.sink(message)
        return Continue(message=message)


class ElicitHandler(ActionHandler):
    """Suspends the workflow until a value for the step's variable arrives."""

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        variable = context.param("variable")
        if not variable:
            raise HandlerError(
                f"Elicit step '{step.name}' has no target variable",
                step_name=step.name,
                action=step.action,
            )
        return Suspend(
            variable=variable,
            step_index=context.step_index,
            prompt=context.param("prompt"),
        )


# Status file sections and the story states they hold
STATUS_SECTIONS = {
    "## BACKLOG": "backlog",
    "## TODO": "todo",
    "## IN PROGRESS": "in_progress",
    "## DONE": "done",
}

STORY_LINE_PATTERN = re.compile(r"^-\s*\[([^\]]+)\]\s*(.+?)(?:\s*\[Points:\s*(\d+)\])?\s*$")


@dataclass
class Story:
    """One story line of a status file."""

    id: str
    title: str
    state: str
    points: int | None = None


@dataclass
class StoryStatus:
    """Stories of a status file grouped by state."""

    backlog: list[Story] = field(default_factory=list)
    todo: list[Story] = field(default_factory=list)
    in_progress: list[Story] = field(default_factory=list)
    done: list[Story] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        """Number of stories per state."""
        return {
            "backlog": len(self.backlog),
            "todo": len(self.todo),
            "in_progress": len(self.in_progress),
            "done": len(self.done),
        }

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def parse_status_file(content: str) -> StoryStatus:
    """Parse a markdown status file.

    Stories are list items of the form ``- [ID] Title [Points: N]`` below
    one of the ``## BACKLOG``, ``## TODO``, ``## IN PROGRESS`` or
    ``## DONE`` headings. Lines outside those sections are ignored.

    Example:
        >>> status = parse_status_file("## TODO\\n- [CORE-1] Parser [Points: 3]\\n")
        >>> status.todo[0].points
        3
    """
    status = StoryStatus()
    section: str | None = None

    for line in content.splitlines():
        for heading, state in STATUS_SECTIONS.items():
            if heading in line:
                section = state
                break

        if section is None:
            continue

        match = STORY_LINE_PATTERN.match(line)
        if match:
            story_id, title, points = match.groups()
            getattr(status, section).append(
                Story(
                    id=story_id.strip(),
                    title=title.strip(),
                    state=section,
                    points=int(points) if points else None,
                )
            )

    return status


class LoadStateMachineHandler(ActionHandler):
    """Loads a story status file into workflow variables.

    Binds ``todo_story_id``, ``todo_story_title`` and ``todo_story_points``
    for the first TODO story, the matching ``in_progress_story_*``
    variables for the first story in progress, and a ``state_machine``
    summary of per-state counts. A missing status file is treated as an
    empty board.

    Args:
        base_dir: Directory relative status file paths are resolved against.
    """

    def __init__(self, base_dir: str | Path | None = None) -> None:
        self.base_dir = Path(base_dir) if base_dir is not None else None

    def _resolve(self, status_file: str) -> Path:
        path = Path(status_file)
        if not path.is_absolute() and self.base_dir is not None:
            path = self.base_dir / path
        return path

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        path = self._resolve(context.param("status_file"))
        logger.debug("Loading status file %s", path)

        try:
            content = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.info("Status file %s not found, using an empty board", path)
            content = ""
        except OSError as e:
            raise HandlerError(
                f"Failed to load status file '{path}': {e}",
                step_name=step.name,
                action=step.action,
                original_error=e,
            ) from e

        status = parse_status_file(content)
        bindings: dict[str, Any] = {"state_machine": status.counts()}
        for prefix, stories in (("todo_story", status.todo), ("in_progress_story", status.in_progress)):
            if stories:
                story = stories[0]
                bindings[f"{prefix}_id"] = story.id
                bindings[f"{prefix}_title"] = story.title
                bindings[f"{prefix}_points"] = story.points or 0

        counts = status.counts()
        return Continue(
            variable=context.param("variable"),
            value=status.to_dict() if context.param("variable") else None,
            bindings=bindings,
            message=f"TODO stories: {counts['todo']}, IN PROGRESS: {counts['in_progress']}",
        )
