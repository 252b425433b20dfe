"""Expression evaluator.

Walks an expression AST and reduces it to a dynamic value, resolving root
context names through a :class:`VariableProvider`. Evaluation is synchronous
and side-effect free apart from ``hashFiles()`` reading files.

Evaluation Rules:
- Unknown root variables are errors, raised by the provider.
- Missing properties and out-of-range indices evaluate to ``null``.
- ``&&`` and ``||`` short-circuit and return the deciding operand itself,
  not a boolean: ``1 && 'foo'`` is ``'foo'``, ``false || 0`` is ``0``.
- ``!`` negates the truthiness of its operand.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Never, NoReturn

from gharun.expressions.errors import ExpressionEvaluationError
from gharun.expressions.functions import call_function
from gharun.expressions.nodes import (
    BooleanNode,
    CompareNode,
    ExpressionNode,
    FunctionCallNode,
    IndexAccessNode,
    LogicalNode,
    NotNode,
    NullNode,
    NumberNode,
    PropertyDerefNode,
    StringNode,
    VariableNode,
    WildcardDerefNode,
)
from gharun.expressions.protocols import VariableProvider
from gharun.expressions.values import compare, get_index, get_property, is_truthy

__all__ = ["evaluate"]


def evaluate(node: ExpressionNode, provider: VariableProvider) -> Any:
    """Evaluate ``node`` against ``provider``.

    Args:
        node: AST root produced by the parser.
        provider: Source of root context values.

    Returns:
        The resulting value: None, bool, int, float, str, mapping or list.

    Raises:
        ExpressionEvaluationError: On unknown variables or functions, bad
            function arity, unsupported comparisons or unknown node kinds.
    """
    match node:
        case NullNode():
            return None
        case BooleanNode() | NumberNode() | StringNode():
            return node.value
        case VariableNode():
            return provider.get_variable(node.name)
        case PropertyDerefNode():
            return get_property(evaluate(node.target, provider), node.name)
        case WildcardDerefNode():
            return _wildcard(evaluate(node.target, provider))
        case IndexAccessNode():
            target = evaluate(node.target, provider)
            return get_index(target, evaluate(node.index, provider))
        case NotNode():
            return not is_truthy(evaluate(node.operand, provider))
        case CompareNode():
            left = evaluate(node.left, provider)
            right = evaluate(node.right, provider)
            return compare(node.operator, left, right)
        case LogicalNode():
            return _logical(node, provider)
        case FunctionCallNode():
            args = [evaluate(arg, provider) for arg in node.args]
            return call_function(node.name, provider, args)
        case _:
            _unsupported(node)


def _unsupported(node: Never) -> NoReturn:
    # Typed like typing.assert_never; raises an evaluation error instead
    raise ExpressionEvaluationError(
        f"Unsupported expression node {type(node).__name__}"
    )


def _logical(node: LogicalNode, provider: VariableProvider) -> Any:
    left = evaluate(node.left, provider)
    if node.operator == "&&":
        return evaluate(node.right, provider) if is_truthy(left) else left
    if node.operator == "||":
        return left if is_truthy(left) else evaluate(node.right, provider)
    raise ExpressionEvaluationError(f"Unknown logical operator '{node.operator}'")


def _wildcard(value: Any) -> Any:
    """``value.*``: objects yield their values, arrays yield themselves."""
    if isinstance(value, Mapping):
        return list(value.values())
    return value
