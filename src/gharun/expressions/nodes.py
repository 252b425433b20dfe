"""AST node types produced by the expression parser.

Every node is an immutable dataclass. ``ExpressionNode`` is the closed union
of node kinds the evaluator dispatches on.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Literal

__all__ = [
    "NullNode",
    "BooleanNode",
    "NumberNode",
    "StringNode",
    "VariableNode",
    "PropertyDerefNode",
    "WildcardDerefNode",
    "IndexAccessNode",
    "NotNode",
    "CompareNode",
    "LogicalNode",
    "FunctionCallNode",
    "ExpressionNode",
    "CompareOperator",
    "LogicalOperator",
    "iter_nodes",
]

CompareOperator = Literal["==", "!=", "<", "<=", ">", ">="]
LogicalOperator = Literal["&&", "||"]


@dataclass(frozen=True, slots=True)
class NullNode:
    """The ``null`` literal."""


@dataclass(frozen=True, slots=True)
class BooleanNode:
    value: bool


@dataclass(frozen=True, slots=True)
class NumberNode:
    """Numeric literal; hex and integral literals are ints, the rest floats."""

    value: int | float


@dataclass(frozen=True, slots=True)
class StringNode:
    value: str


@dataclass(frozen=True, slots=True)
class VariableNode:
    """Root context reference such as ``github`` or ``steps``.

    Names are stored lowercased; context names are case-insensitive.
    """

    name: str


@dataclass(frozen=True, slots=True)
class PropertyDerefNode:
    """``target.name``."""

    target: ExpressionNode
    name: str


@dataclass(frozen=True, slots=True)
class WildcardDerefNode:
    """``target.*``: selects every element so a following ``.name`` maps over them."""

    target: ExpressionNode


@dataclass(frozen=True, slots=True)
class IndexAccessNode:
    """``target[index]``."""

    target: ExpressionNode
    index: ExpressionNode


@dataclass(frozen=True, slots=True)
class NotNode:
    operand: ExpressionNode


@dataclass(frozen=True, slots=True)
class CompareNode:
    operator: CompareOperator
    left: ExpressionNode
    right: ExpressionNode


@dataclass(frozen=True, slots=True)
class LogicalNode:
    operator: LogicalOperator
    left: ExpressionNode
    right: ExpressionNode


@dataclass(frozen=True, slots=True)
class FunctionCallNode:
    """Built-in function call. ``name`` is stored lowercased."""

    name: str
    args: tuple[ExpressionNode, ...]


ExpressionNode = (
    NullNode
    | BooleanNode
    | NumberNode
    | StringNode
    | VariableNode
    | PropertyDerefNode
    | WildcardDerefNode
    | IndexAccessNode
    | NotNode
    | CompareNode
    | LogicalNode
    | FunctionCallNode
)


def iter_nodes(node: ExpressionNode) -> Iterator[ExpressionNode]:
    """Yield ``node`` and every node below it, depth first."""
    yield node
    if isinstance(node, (PropertyDerefNode, WildcardDerefNode)):
        yield from iter_nodes(node.target)
    elif isinstance(node, IndexAccessNode):
        yield from iter_nodes(node.target)
        yield from iter_nodes(node.index)
    elif isinstance(node, NotNode):
        yield from iter_nodes(node.operand)
    elif isinstance(node, (CompareNode, LogicalNode)):
        yield from iter_nodes(node.left)
        yield from iter_nodes(node.right)
    elif isinstance(node, FunctionCallNode):
        for arg in node.args:
            yield from iter_nodes(arg)
