# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Jinja2-based template renderer for step parameters and template files.

This module provides the TemplateRenderer class for rendering Jinja2
templates with workflow variables, including custom filters for JSON
serialization.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from jinja2 import (
    BaseLoader,
    Environment,
    FileSystemLoader,
    StrictUndefined,
    TemplateNotFound,
    TemplateSyntaxError,
)
from jinja2 import UndefinedError as Jinja2UndefinedError

from stepwise.exceptions import TemplateError

TEMPLATE_MARKERS = ("{{", "{%")


class TemplateRenderer:
    """Jinja2-based template renderer.

    Uses StrictUndefined to fail fast on missing variables and provides
    custom filters for common operations like JSON serialization. With a
    search path, template files can ``{% include %}`` partials stored there.

    Args:
        search_path: Optional directory partials are loaded from.

    Example:
        >>> renderer = TemplateRenderer()
        >>> renderer.render("Hello {{ name }}!", {"name": "World"})
        'Hello World!'
        >>> renderer.render("Data: {{ items | json }}", {"items": ["a", "b"]})
        'Data: [\\n  "a",\\n  "b"\\n]'
    """

    def __init__(self, search_path: str | Path | None = None) -> None:
        """Initialize the template renderer with a Jinja2 environment."""
        loader = FileSystemLoader(str(search_path)) if search_path is not None else BaseLoader()
        self.env = Environment(
            loader=loader,
            undefined=StrictUndefined,  # Fail fast on missing variables
            autoescape=False,  # Output is markdown and plain text
            keep_trailing_newline=True,
        )

        self.env.filters["json"] = self._json_filter
        self.env.filters["default"] = self._default_filter

    @staticmethod
    def has_template_syntax(text: str) -> bool:
        """True if the text contains Jinja2 expressions or statements."""
        return any(marker in text for marker in TEMPLATE_MARKERS)

    @staticmethod
    def _json_filter(value: Any, indent: int = 2) -> str:
        """Serialize value to formatted JSON string."""
        return json.dumps(value, indent=indent, default=str)

    @staticmethod
    def _default_filter(value: Any, default: Any = "") -> Any:
        """Return default if value is None or undefined."""
        if value is None:
            return default
        return value

    def render(
        self,
        template: str,
        context: dict[str, Any],
        file_path: str | None = None,
    ) -> str:
        """Render a template string with the given context.

        Args:
            template: Jinja2 template string.
            context: Variables available in the template.
            file_path: Optional template file path for error messages.

        Returns:
            Rendered string.

        Raises:
            TemplateError: If rendering fails due to missing variables or syntax errors.
        """
        try:
            tmpl = self.env.from_string(template)
            return tmpl.render(**context)
        except Jinja2UndefinedError as e:
            variable_name = self._extract_variable_name(str(e))
            raise TemplateError(
                f"Undefined variable in template: {e}",
                file_path=file_path,
                undefined_variable=variable_name,
            ) from e
        except TemplateSyntaxError as e:
            raise TemplateError(
                f"Template syntax error: {e}",
                file_path=file_path,
            ) from e
        except TemplateNotFound as e:
            raise TemplateError(
                f"Included template not found: {e.name}",
                suggestion="Place partials in the templates directory",
                file_path=file_path,
            ) from e
        except Exception as e:
            raise TemplateError(
                f"Template rendering failed: {e}",
                suggestion="Check template and context for errors",
                file_path=file_path,
            ) from e

    def render_file(self, path: str | Path, context: dict[str, Any]) -> str:
        """Render a template file with the given context.

        Raises:
            TemplateError: If the file cannot be read or rendering fails.
        """
        path = Path(path)
        try:
            source = path.read_text(encoding="utf-8")
        except OSError as e:
            raise TemplateError(
                f"Failed to read template '{path}': {e}",
                suggestion="Check the template reference and the templates directory",
                file_path=str(path),
            ) from e
        return self.render(source, context, file_path=str(path))

    def evaluate_condition(self, expression: str, context: dict[str, Any]) -> bool:
        """Evaluate a template expression as a boolean condition.

        Args:
            expression: Jinja2 expression (e.g., "{{ approved }}").
            context: Variables available for evaluation.

        Raises:
            TemplateError: If expression evaluation fails.
        """
        result = self.render(expression, context)
        result_lower = result.lower().strip()
        if result_lower in ("true", "1", "yes"):
            return True
        if result_lower in ("false", "0", "no", "", "none"):
            return False
        return bool(result)

    @staticmethod
    def _extract_variable_name(error_msg: str) -> str:
        """Extract variable name from Jinja2 undefined error message.

        Jinja2 error messages look like "'name' is undefined".
        """
        if "'" in error_msg:
            parts = error_msg.split("'")
            if len(parts) >= 2:
                return parts[1]
        return "unknown"
