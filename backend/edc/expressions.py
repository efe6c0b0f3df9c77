"""
Safe expression evaluation for conditional fields and cross-field checks.

Form schemas carry two kinds of expressions over the record being validated:

- ``condition``: decides whether a field applies at all
  (e.g. ``sex == "F"`` or ``age >= 18 and consent``)
- ``validity_expression``: a cross-field check on an applicable field
  (e.g. ``visit_date >= consent_date``)

Expressions are evaluated with simpleeval, which walks the parsed AST and only
permits comparisons, boolean connectives, arithmetic, membership tests,
literals and the whitelisted functions below. Attribute access to dunder
names, imports and arbitrary calls are rejected, so schema data never gets to
execute code.
"""

import ast
from typing import Any, Dict, Optional, Set, Tuple

from simpleeval import EvalWithCompoundTypes, InvalidExpression

from config.logging import get_logger
from edc.calculations import CALCULATION_FUNCTIONS

logger = get_logger(__name__)


def _lower(value):
    return value.lower() if isinstance(value, str) else value


def _upper(value):
    return value.upper() if isinstance(value, str) else value


def _is_empty(value) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, list, tuple, set, dict)):
        return len(value) == 0
    return False


# Safe functions whitelist - only these functions are allowed in expressions
SAFE_FUNCTIONS = {
    "len": len,
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "int": int,
    "float": float,
    "str": str,
    "bool": bool,
    "lower": _lower,
    "upper": _upper,
    "is_empty": _is_empty,
    **CALCULATION_FUNCTIONS,
}

# Exceptions an expression may raise at runtime against real data
_RUNTIME_ERRORS = (InvalidExpression, TypeError, ValueError, ArithmeticError, KeyError)


class ExpressionSyntaxError(ValueError):
    """An expression could not be parsed."""


def parse_expression(expression: str) -> ast.Expression:
    """Parse an expression, raising ExpressionSyntaxError when it is malformed."""
    if not isinstance(expression, str) or not expression.strip():
        raise ExpressionSyntaxError("expression must be a non-empty string")
    try:
        return ast.parse(expression.strip(), mode="eval")
    except SyntaxError as e:
        raise ExpressionSyntaxError(f"invalid expression {expression!r}: {e.msg}") from e


def referenced_names(expression: str) -> Set[str]:
    """
    Free variable names an expression reads.

    Names bound inside comprehensions and whitelisted function names are
    excluded, leaving the record fields the expression depends on.
    """
    tree = parse_expression(expression)
    loaded: Set[str] = set()
    bound: Set[str] = set()
    for node in ast.walk(tree):
        if isinstance(node, ast.Name):
            if isinstance(node.ctx, ast.Store):
                bound.add(node.id)
            else:
                loaded.add(node.id)
    return loaded - bound - set(SAFE_FUNCTIONS)


class ExpressionEvaluator:
    """Evaluate schema expressions deterministically against a record."""

    def evaluate(
        self,
        expression: str,
        variables: Dict[str, Any],
    ) -> Tuple[bool, Optional[str]]:
        """
        Evaluate an expression with given variables.

        Args:
            expression: Expression to evaluate (e.g., "weight_kg <= 250")
            variables: Field values visible to the expression

        Returns:
            Tuple of (passed, error_message)
            - (True, None) if the expression is truthy
            - (False, None) if the expression is falsy
            - (False, error_msg) if evaluation raised
        """
        result, error = self.compute(expression, variables)
        if error is not None:
            return (False, error)
        return (bool(result), None)

    def compute(
        self,
        expression: str,
        variables: Dict[str, Any],
    ) -> Tuple[Any, Optional[str]]:
        """Evaluate an expression for its value: ``(value, None)`` or ``(None, error)``."""
        try:
            evaluator = EvalWithCompoundTypes(
                names=dict(variables),
                functions=SAFE_FUNCTIONS,
            )
            return (evaluator.eval(expression.strip()), None)
        except _RUNTIME_ERRORS as e:
            logger.warning(
                "expression_evaluation_error",
                expression=expression,
                error_type=type(e).__name__,
                error=str(e),
            )
            return (None, f"{type(e).__name__}: {e}")


default_evaluator = ExpressionEvaluator()
