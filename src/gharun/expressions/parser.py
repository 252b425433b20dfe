"""Expression parser.

Turns ``${{ ... }}`` text into an AST of :mod:`gharun.expressions.nodes`.

Expression syntax:
- Literals: ``null``, ``true``, ``false``, ``123``, ``1.5``, ``0xff``,
  ``1e-3``, ``'it''s'`` (single quotes, ``''`` escapes a quote)
- Context references: ``github.ref``, ``steps.build.outputs.path``
- Index and wildcard access: ``matrix['os']``, ``needs.*.result``
- Operators: ``!``, ``==``, ``!=``, ``<``, ``<=``, ``>``, ``>=``, ``&&``, ``||``
- Function calls: ``contains(github.ref, 'main')``

Implementation:
This module uses a Lark LALR parser over the grammar in grammar.lark.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from lark import (
    Lark,
    Token,
    Transformer,
    UnexpectedCharacters,
    UnexpectedInput,
    UnexpectedToken,
)

from gharun.expressions.errors import ExpressionEvaluationError, ExpressionSyntaxError
from gharun.expressions.evaluator import evaluate
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

__all__ = [
    "Expression",
    "parse_expression",
    "parse_expressions",
    "parse_node",
    "is_expression",
]

_GRAMMAR_PATH = Path(__file__).parent / "grammar.lark"
_GRAMMAR = _GRAMMAR_PATH.read_text()

_parser = Lark(
    _GRAMMAR,
    parser="lalr",
    start="start",
    propagate_positions=False,
    maybe_placeholders=True,
)

# Pattern for locating ${{ ... }} expressions in text
_EXPRESSION_PATTERN = re.compile(r"\$\{\{(.*?)\}\}", re.DOTALL)

# Pattern matching text that is exactly one wrapped expression
_WRAPPED_PATTERN = re.compile(r"^\s*\$\{\{(.*)\}\}\s*$", re.DOTALL)


class _NodeTransformer(Transformer[Token, ExpressionNode]):
    """Transform the Lark parse tree into expression nodes."""

    def null_literal(self, items: list[Any]) -> NullNode:
        return NullNode()

    def true_literal(self, items: list[Any]) -> BooleanNode:
        return BooleanNode(True)

    def false_literal(self, items: list[Any]) -> BooleanNode:
        return BooleanNode(False)

    def number_literal(self, items: list[Token]) -> NumberNode:
        text = str(items[0])
        if text.lower().startswith("0x"):
            return NumberNode(int(text, 16))
        if any(marker in text for marker in ".eE"):
            return NumberNode(float(text))
        return NumberNode(int(text))

    def string_literal(self, items: list[Token]) -> StringNode:
        return StringNode(str(items[0])[1:-1].replace("''", "'"))

    def variable(self, items: list[Token]) -> VariableNode:
        return VariableNode(str(items[0]).lower())

    def property_deref(self, items: list[Any]) -> PropertyDerefNode:
        return PropertyDerefNode(items[0], str(items[1]))

    def wildcard_deref(self, items: list[Any]) -> WildcardDerefNode:
        return WildcardDerefNode(items[0])

    def index_access(self, items: list[Any]) -> IndexAccessNode:
        return IndexAccessNode(items[0], items[1])

    def not_op(self, items: list[Any]) -> NotNode:
        return NotNode(items[0])

    def compare_op(self, items: list[Any]) -> CompareNode:
        left, operator, right = items
        return CompareNode(str(operator), left, right)  # type: ignore[arg-type]

    def and_op(self, items: list[Any]) -> LogicalNode:
        return LogicalNode("&&", items[0], items[1])

    def or_op(self, items: list[Any]) -> LogicalNode:
        return LogicalNode("||", items[0], items[1])

    def arguments(self, items: list[Any]) -> tuple[ExpressionNode, ...]:
        return tuple(items)

    def function_call(self, items: list[Any]) -> FunctionCallNode:
        name, args = items
        return FunctionCallNode(str(name).lower(), args or ())


def _strip_wrapper(expression: str) -> str:
    """Strip a surrounding ${{ }} wrapper, if present."""
    match = _WRAPPED_PATTERN.match(expression)
    if match is not None:
        return match.group(1)
    return expression


def parse_node(expression: str) -> ExpressionNode:
    """Parse a bare or wrapped expression into its AST root.

    Raises:
        ExpressionSyntaxError: For empty or malformed expressions.
    """
    inner = _strip_wrapper(expression)
    if not inner.strip():
        raise ExpressionSyntaxError("Empty expression", expression=expression)

    try:
        tree = _parser.parse(inner)
    except UnexpectedCharacters as e:
        raise ExpressionSyntaxError(
            f"Invalid character {inner[e.pos_in_stream]!r} in expression",
            expression=inner,
            position=e.pos_in_stream,
        ) from e
    except UnexpectedToken as e:
        if e.token.type == "$END":
            raise ExpressionSyntaxError(
                "Unexpected end of expression", expression=inner
            ) from e
        raise ExpressionSyntaxError(
            f"Unexpected token {str(e.token)!r}",
            expression=inner,
            position=e.token.start_pos or 0,
        ) from e
    except UnexpectedInput as e:
        raise ExpressionSyntaxError(str(e), expression=inner) from e

    result = _NodeTransformer().transform(tree)
    return result


@dataclass(frozen=True)
class Expression:
    """A parsed ``${{ }}`` expression.

    Attributes:
        value: The expression text, including the ``${{ }}`` wrapper.
        start_index: Offset of ``value`` in the text it was found in.
        end_index: Offset just past ``value`` in that text.
        root: AST root of the expression.

    Evaluating is pure: every call re-walks ``root`` against the provider.
    """

    value: str
    start_index: int = 0
    end_index: int = 0
    root: ExpressionNode = field(default_factory=NullNode, compare=False, repr=False)

    @property
    def body(self) -> str:
        """Expression text without the ``${{ }}`` wrapper."""
        return _strip_wrapper(self.value).strip()

    def evaluate(self, provider: VariableProvider) -> Any:
        """Evaluate the expression against ``provider``.

        Raises:
            ExpressionEvaluationError: If evaluation fails; the message names
                this expression.
        """
        try:
            return evaluate(self.root, provider)
        except ExpressionEvaluationError as e:
            if e.expression is not None:
                raise
            raise ExpressionEvaluationError(
                e.reason, expression=self.value, context_vars=e.context_vars
            ) from e


def parse_expression(expression: str) -> Expression:
    """Parse a single expression.

    A bare expression (``github.ref == 'main'``) is wrapped in ``${{ }}``; a
    wrapped one is taken as is.

    Raises:
        ExpressionSyntaxError: For invalid expression syntax.

    Examples:
        >>> parse_expression("1 == 1").value
        '${{ 1 == 1 }}'
    """
    text = expression.strip()
    if not is_expression(text):
        text = f"${{{{ {text} }}}}"
    return Expression(
        value=text, start_index=0, end_index=len(text), root=parse_node(text)
    )


def parse_expressions(text: str) -> list[Expression]:
    """Find and parse every ``${{ }}`` expression embedded in ``text``.

    Returns:
        Expressions in order of appearance, with their offsets in ``text``.

    Raises:
        ExpressionSyntaxError: If an embedded expression is malformed or a
            ``${{`` is never closed.
    """
    expressions: list[Expression] = []
    for match in _EXPRESSION_PATTERN.finditer(text):
        expressions.append(
            Expression(
                value=match.group(0),
                start_index=match.start(),
                end_index=match.end(),
                root=parse_node(match.group(1)),
            )
        )
    last_end = expressions[-1].end_index if expressions else 0
    unclosed = text.find("${{", last_end)
    if unclosed != -1:
        raise ExpressionSyntaxError(
            "Unclosed expression, missing '}}'",
            expression=text,
            position=unclosed,
        )
    return expressions


def is_expression(text: str) -> bool:
    """True if ``text`` is exactly one wrapped expression."""
    match = _WRAPPED_PATTERN.match(text)
    return match is not None and "${{" not in match.group(1)
