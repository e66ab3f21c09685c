# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.

"""Guard condition evaluation for conditional steps.

Conditions reference workflow variables as ``${VAR}`` or ``{{VAR}}`` and may
use either Python or JavaScript-style operators::

    ${LEVEL} === 0
    ${TEAM_SIZE} > 5 && ${SECURITY} === 'high'
    !${DEBUG_MODE}
    project_scale in ['enterprise', 'large']

Expressions are evaluated with simpleeval, never with ``eval``. Full Jinja2
expressions such as ``{{ score >= 8 }}`` are rendered by the template
renderer instead.
"""

from __future__ import annotations

import re
from typing import Any

from simpleeval import EvalWithCompoundTypes, NameNotDefined

from stepwise.engine.template import TemplateRenderer
from stepwise.exceptions import ConditionError, TemplateError

# ${VAR} or {{VAR}} with an identifier inside
VARIABLE_REF_PATTERN = re.compile(
    r"\$\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}|\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}"
)

# Quoted string literals are never rewritten
STRING_LITERAL_PATTERN = re.compile(r"('(?:\\.|[^'\\])*'|\"(?:\\.|[^\"\\])*\")")

JS_OPERATORS = (
    (re.compile(r"==="), "=="),
    (re.compile(r"!=="), "!="),
    (re.compile(r"&&"), " and "),
    (re.compile(r"\|\|"), " or "),
    (re.compile(r"!(?!=)"), " not "),
)

JS_LITERALS = {"true": True, "false": False, "null": None, "undefined": None}


class ConditionEvaluator:
    """Evaluates guard conditions against workflow variables.

    Args:
        strict: If True, references to unbound variables raise ConditionError.
            Otherwise they evaluate to None.

    Example:
        >>> evaluator = ConditionEvaluator()
        >>> evaluator.evaluate("${LEVEL} === 2 && !${SKIP}", {"LEVEL": 2, "SKIP": False})
        True
    """

    def __init__(self, strict: bool = False) -> None:
        self.strict = strict
        self.renderer = TemplateRenderer()

    def evaluate(self, condition: str, variables: dict[str, Any]) -> bool:
        """Evaluate a condition to a boolean.

        Raises:
            ConditionError: If the condition is empty, references an unknown
                variable in strict mode, fails to evaluate, or does not
                produce a boolean.
        """
        if not condition or not condition.strip():
            raise ConditionError("Condition cannot be empty", condition)

        expression, names = self._substitute_refs(condition, variables)

        if "{{" in expression and "}}" in expression:
            return self._evaluate_template(condition, expression, names)

        expression = self._translate_operators(expression)
        for literal, value in JS_LITERALS.items():
            names.setdefault(literal, value)

        try:
            result = EvalWithCompoundTypes(names=names).eval(expression.strip())
        except NameNotDefined as e:
            raise ConditionError(
                f"Unknown variable in condition: {e}",
                condition,
                suggestion="Reference variables as ${NAME} or bind them before this step",
            ) from e
        except Exception as e:
            raise ConditionError(f"Failed to evaluate condition '{condition}': {e}", condition) from e

        if not isinstance(result, bool):
            raise ConditionError(
                f"Condition must evaluate to boolean, got: {type(result).__name__}",
                condition,
            )
        return result

    def _substitute_refs(
        self, condition: str, variables: dict[str, Any]
    ) -> tuple[str, dict[str, Any]]:
        """Replace ${VAR} and {{VAR}} references with bare names."""
        names = dict(variables)

        def replace(match: re.Match) -> str:
            name = match.group(1) or match.group(2)
            if name not in variables:
                if self.strict:
                    raise ConditionError(f"Variable not found: {name}", condition)
                names[name] = None
            return f" {name} "

        return VARIABLE_REF_PATTERN.sub(replace, condition), names

    @staticmethod
    def _translate_operators(expression: str) -> str:
        """Rewrite JavaScript-style operators outside string literals."""
        parts = STRING_LITERAL_PATTERN.split(expression)
        for i in range(0, len(parts), 2):
            segment = parts[i]
            for pattern, replacement in JS_OPERATORS:
                segment = pattern.sub(replacement, segment)
            parts[i] = segment
        return "".join(parts)

    def _evaluate_template(self, condition: str, expression: str, names: dict[str, Any]) -> bool:
        try:
            return self.renderer.evaluate_condition(expression, names)
        except TemplateError as e:
            raise ConditionError(
                f"Failed to evaluate condition '{condition}': {e.message}", condition
            ) from e


def evaluate_condition(condition: str, variables: dict[str, Any], strict: bool = False) -> bool:
    """Convenience wrapper around ConditionEvaluator.evaluate."""
    return ConditionEvaluator(strict=strict).evaluate(condition, variables)
