"""Condition evaluation for step and job ``if`` fields.

A condition may be written with or without ``${{ }}``. An empty condition
means ``success()``, and a condition that calls none of the status functions
is guarded as ``success() && (<condition>)``, so a failed job skips it.
"""

from __future__ import annotations

from gharun.constants import STATUS_FUNCTIONS
from gharun.expressions.nodes import FunctionCallNode, LogicalNode, iter_nodes
from gharun.expressions.parser import Expression, parse_expression
from gharun.expressions.protocols import VariableProvider
from gharun.expressions.values import is_truthy

__all__ = ["parse_condition", "evaluate_condition", "uses_status_function"]

DEFAULT_CONDITION = "success()"


def uses_status_function(expression: Expression) -> bool:
    """True if the expression calls success/failure/cancelled/always."""
    return any(
        isinstance(node, FunctionCallNode) and node.name in STATUS_FUNCTIONS
        for node in iter_nodes(expression.root)
    )


def parse_condition(condition: str | None) -> Expression:
    """Parse an ``if`` value into the expression that is actually evaluated.

    Raises:
        ExpressionSyntaxError: If the condition is malformed.
    """
    if condition is None or not condition.strip():
        return parse_expression(DEFAULT_CONDITION)
    expression = parse_expression(condition)
    if uses_status_function(expression):
        return expression
    guarded = LogicalNode("&&", FunctionCallNode("success", ()), expression.root)
    return Expression(
        value=expression.value,
        start_index=expression.start_index,
        end_index=expression.end_index,
        root=guarded,
    )


def evaluate_condition(condition: str | None, provider: VariableProvider) -> bool:
    """Evaluate an ``if`` value and apply truthiness to the result.

    Raises:
        ExpressionSyntaxError: If the condition is malformed.
        ExpressionEvaluationError: If evaluation fails.
    """
    return is_truthy(parse_condition(condition).evaluate(provider))
