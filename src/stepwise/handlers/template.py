# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Template handler: renders a template file into an output document."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from stepwise.engine.context import StepContext
from stepwise.engine.results import Continue, StepOutcome
from stepwise.engine.store import atomic_write_text
from stepwise.engine.template import TemplateRenderer
from stepwise.exceptions import HandlerError, TemplateError
from stepwise.handlers.base import ActionHandler

if TYPE_CHECKING:
    from stepwise.config.schema import StepDef

logger = logging.getLogger(__name__)


class TemplateHandler(ActionHandler):
    """Renders a Jinja2 template file with the workflow variables.

    The template sees the workflow variables merged with the step's own
    ``variables``. When the step has an ``output_file`` the rendered text is
    written there atomically and the output path is bound to the step's
    variable; otherwise the rendered text itself is bound.

    Args:
        templates_dir: Directory relative template references resolve against.
        output_dir: Directory relative output files are written below.
        renderer: Template renderer. Creates one if not provided.
    """

    def __init__(
        self,
        templates_dir: str | Path | None = None,
        output_dir: str | Path | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self.templates_dir = Path(templates_dir) if templates_dir is not None else None
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.renderer = renderer or TemplateRenderer(search_path=self.templates_dir)

    def resolve_template(self, reference: str) -> Path:
        """Find the template file for a reference.

        Relative references are looked up in the templates directory first
        and then relative to the working directory.

        Raises:
            TemplateError: If no such file exists.
        """
        path = Path(reference)
        candidates = [path]
        if not path.is_absolute() and self.templates_dir is not None:
            candidates.insert(0, self.templates_dir / path)
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        raise TemplateError(
            f"Template not found: {reference}",
            suggestion=f"Place the template in {self.templates_dir or 'the working directory'}",
            file_path=str(candidates[0]),
        )

    def resolve_output(self, output_file: str) -> Path:
        path = Path(output_file)
        if not path.is_absolute() and self.output_dir is not None:
            path = self.output_dir / path
        return path

    async def handle(self, step: StepDef, context: StepContext) -> StepOutcome:
        template_path = self.resolve_template(context.param("template"))
        render_vars = {**context.variables, **context.param("variables", {})}
        rendered = self.renderer.render_file(template_path, render_vars)

        output_file = context.param("output_file")
        if not output_file:
            return Continue(
                variable=context.param("variable"),
                value=rendered,
                message=f"Rendered {template_path}",
            )

        output_path = self.resolve_output(output_file)
        try:
            atomic_write_text(output_path, rendered)
        except OSError as e:
            raise HandlerError(
                f"Failed to write template output '{output_path}': {e}",
                suggestion="Check that the output directory is writable",
                step_name=step.name,
                action=step.action,
                original_error=e,
            ) from e

        logger.info("Template rendered: %s -> %s", template_path, output_path)
        return Continue(
            variable=context.param("variable"),
            value=str(output_path),
            message=f"Rendered {template_path} -> {output_path}",
        )
