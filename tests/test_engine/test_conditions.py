"""Unit tests for ConditionEvaluator.

Tests cover:
- ${VAR} and {{VAR}} references
- JavaScript-style operators (===, !==, &&, ||, !)
- Operators inside string literals left untouched
- Membership tests against list literals
- Jinja2 expressions
- Unbound variables in strict and non-strict mode
- Invalid and non-boolean conditions
"""

import pytest

from stepwise.engine.conditions import ConditionEvaluator, evaluate_condition
from stepwise.exceptions import ConditionError


class TestReferences:
    """Tests for variable reference syntaxes."""

    def test_dollar_reference(self) -> None:
        """Test ${VAR} references resolve to the variable."""
        assert evaluate_condition("${LEVEL} == 2", {"LEVEL": 2}) is True

    def test_mustache_reference(self) -> None:
        """Test {{VAR}} references resolve to the variable."""
        assert evaluate_condition("{{ LEVEL }} > 1", {"LEVEL": 2}) is True

    def test_bare_names(self) -> None:
        """Test bound variables can be referenced by bare name."""
        assert evaluate_condition("score >= 8", {"score": 9}) is True

    def test_string_comparison(self) -> None:
        """Test comparison against string literals."""
        assert evaluate_condition("${SECURITY} == 'high'", {"SECURITY": "high"}) is True
        assert evaluate_condition("${SECURITY} == 'high'", {"SECURITY": "low"}) is False

    def test_membership_in_list(self) -> None:
        """Test membership against a list literal."""
        variables = {"project_scale": "enterprise"}

        assert evaluate_condition("project_scale in ['enterprise', 'large']", variables) is True
        assert evaluate_condition("project_scale in ['small']", variables) is False


class TestJavaScriptOperators:
    """Tests for JavaScript-style operator translation."""

    @pytest.mark.parametrize(
        ("condition", "expected"),
        [
            ("${LEVEL} === 0", True),
            ("${LEVEL} !== 0", False),
            ("${LEVEL} === 0 && ${TEAM_SIZE} > 5", True),
            ("${LEVEL} === 1 || ${TEAM_SIZE} > 5", True),
            ("${LEVEL} === 1 || ${TEAM_SIZE} > 50", False),
            ("!${DEBUG_MODE}", True),
            ("!(${LEVEL} === 0)", False),
        ],
    )
    def test_operators(self, condition: str, expected: bool) -> None:
        """Test each operator evaluates like its Python counterpart."""
        variables = {"LEVEL": 0, "TEAM_SIZE": 8, "DEBUG_MODE": False}

        assert evaluate_condition(condition, variables) is expected

    def test_literals(self) -> None:
        """Test true, false and null literals."""
        assert evaluate_condition("${FLAG} === true", {"FLAG": True}) is True
        assert evaluate_condition("${VALUE} === null", {"VALUE": None}) is True

    def test_operators_in_strings_untouched(self) -> None:
        """Test operators inside quoted strings are not rewritten."""
        assert evaluate_condition("${NAME} == 'a && b!'", {"NAME": "a && b!"}) is True


class TestJinjaExpressions:
    """Tests for conditions written as Jinja2 expressions."""

    def test_jinja_expression(self) -> None:
        """Test a full Jinja2 expression is rendered and interpreted."""
        assert evaluate_condition("{{ score >= 8 }}", {"score": 9}) is True
        assert evaluate_condition("{{ score >= 8 }}", {"score": 3}) is False

    def test_jinja_error_becomes_condition_error(self) -> None:
        """Test a failing Jinja2 expression raises ConditionError."""
        with pytest.raises(ConditionError):
            evaluate_condition("{{ missing.attr > 1 }}", {})


class TestUnboundVariables:
    """Tests for references to unbound variables."""

    def test_non_strict_treats_unbound_as_none(self) -> None:
        """Test unbound references evaluate to None by default."""
        assert evaluate_condition("${MISSING} === null", {}) is True
        assert evaluate_condition("!${MISSING}", {}) is True

    def test_strict_raises(self) -> None:
        """Test unbound references raise in strict mode."""
        evaluator = ConditionEvaluator(strict=True)

        with pytest.raises(ConditionError, match="Variable not found: MISSING"):
            evaluator.evaluate("${MISSING} == 1", {})

    def test_unknown_bare_name_raises(self) -> None:
        """Test an unknown bare name raises ConditionError."""
        with pytest.raises(ConditionError, match="Unknown variable"):
            evaluate_condition("unknown_name == 1", {})


class TestInvalidConditions:
    """Tests for conditions that cannot be evaluated."""

    @pytest.mark.parametrize("condition", ["", "   "])
    def test_empty_condition(self, condition: str) -> None:
        """Test empty conditions are rejected."""
        with pytest.raises(ConditionError, match="cannot be empty"):
            evaluate_condition(condition, {})

    def test_syntax_error(self) -> None:
        """Test malformed expressions raise ConditionError."""
        with pytest.raises(ConditionError) as exc_info:
            evaluate_condition("${LEVEL} >>> (", {"LEVEL": 1})

        assert exc_info.value.condition == "${LEVEL} >>> ("

    def test_non_boolean_result(self) -> None:
        """Test conditions must produce a boolean."""
        with pytest.raises(ConditionError, match="must evaluate to boolean"):
            evaluate_condition("${LEVEL} + 1", {"LEVEL": 1})
