"""Literal-or-expression scalar types for workflow documents.

Fields such as ``run``, ``env`` values, ``continue-on-error`` or
``timeout-minutes`` may hold a plain value or a ``${{ }}`` expression. These
types decode either form from the document (expressions are parsed, so
syntax errors surface at load time) and defer evaluation until
:meth:`resolve` is called with a run-time variable provider.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from pydantic import GetCoreSchemaHandler
from pydantic_core import core_schema

from gharun.expressions.errors import ExpressionEvaluationError, ExpressionSyntaxError
from gharun.expressions.parser import (
    Expression,
    is_expression,
    parse_expression,
    parse_expressions,
)
from gharun.expressions.protocols import VariableProvider
from gharun.expressions.values import is_truthy, stringify, to_number

__all__ = ["ExprString", "ExprBool", "ExprInt", "ExprFloat"]

T = TypeVar("T")


class _ExprScalar(ABC, Generic[T]):
    """Holds exactly one of a literal value or an expression."""

    __slots__ = ("_literal", "_expression")

    def __init__(self, value: Any) -> None:
        self._literal: T | None = None
        self._expression: Expression | None = None
        if isinstance(value, str) and is_expression(value):
            self._expression = parse_expression(value)
        else:
            self._literal = self._from_literal(value)

    @property
    def expression(self) -> Expression | None:
        return self._expression

    @property
    def is_expression(self) -> bool:
        return self._expression is not None

    @property
    def raw(self) -> Any:
        """The value as written in the document."""
        if self._expression is not None:
            return self._expression.value
        return self._literal

    def resolve(self, provider: VariableProvider) -> T:
        """Return the literal, or evaluate the expression and coerce it."""
        if self._expression is None:
            return self._literal  # type: ignore[return-value]
        return self._coerce(self._expression.evaluate(provider))

    @abstractmethod
    def _from_literal(self, value: Any) -> T:
        """Validate and convert a literal document value."""

    @abstractmethod
    def _coerce(self, value: Any) -> T:
        """Convert an evaluated expression result."""

    @classmethod
    def _validate(cls, value: Any) -> Any:
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ExpressionSyntaxError as e:
            raise ValueError(e.message) from e

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                lambda value: value.raw
            ),
        )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, _ExprScalar):
            return type(self) is type(other) and self.raw == other.raw
        return NotImplemented

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.raw))

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.raw!r})"


class ExprString(_ExprScalar[str]):
    """A string with any number of embedded ``${{ }}`` expressions.

    Resolving substitutes every expression with its stringified value;
    ``null`` becomes the empty string.

    Example:
        >>> ExprString("Hello ${{ 'world' }}").resolve(provider)
        'Hello world'
    """

    __slots__ = ("_text", "_parts")

    def __init__(self, value: Any) -> None:
        self._literal = None
        self._expression = None
        self._text = self._from_literal(value)
        self._parts = parse_expressions(self._text)

    @property
    def is_expression(self) -> bool:
        return bool(self._parts)

    @property
    def expression(self) -> Expression | None:
        return self._parts[0] if len(self._parts) == 1 else None

    @property
    def expressions(self) -> list[Expression]:
        return list(self._parts)

    @property
    def raw(self) -> str:
        return self._text

    def resolve(self, provider: VariableProvider) -> str:
        if not self._parts:
            return self._text
        out: list[str] = []
        position = 0
        for part in self._parts:
            out.append(self._text[position : part.start_index])
            out.append(stringify(part.evaluate(provider)))
            position = part.end_index
        out.append(self._text[position:])
        return "".join(out)

    def _from_literal(self, value: Any) -> str:
        return value if isinstance(value, str) else stringify(value)

    def _coerce(self, value: Any) -> str:
        return stringify(value)

    def __str__(self) -> str:
        return self._text


class ExprBool(_ExprScalar[bool]):
    """A boolean or an expression whose result is coerced by truthiness."""

    def _from_literal(self, value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValueError(f"expected a boolean or an expression, got {value!r}")

    def _coerce(self, value: Any) -> bool:
        return is_truthy(value)


class ExprInt(_ExprScalar[int]):
    """An integer or an expression whose result must be an integral number."""

    def _from_literal(self, value: Any) -> int:
        if isinstance(value, bool) or value is None:
            raise ValueError(f"expected an integer or an expression, got {value!r}")
        number = to_number(value)
        if math.isnan(number) or not float(number).is_integer():
            raise ValueError(f"expected an integer or an expression, got {value!r}")
        return int(number)

    def _coerce(self, value: Any) -> int:
        number = to_number(value)
        if math.isnan(number) or math.isinf(number) or not float(number).is_integer():
            raise ExpressionEvaluationError(
                f"Expected an integer, got {stringify(value)!r}"
            )
        return int(number)


class ExprFloat(_ExprScalar[float]):
    """A number or an expression whose result must be numeric."""

    def _from_literal(self, value: Any) -> float:
        if isinstance(value, bool) or value is None:
            raise ValueError(f"expected a number or an expression, got {value!r}")
        number = to_number(value)
        if math.isnan(number):
            raise ValueError(f"expected a number or an expression, got {value!r}")
        return float(number)

    def _coerce(self, value: Any) -> float:
        number = to_number(value)
        if math.isnan(number):
            raise ExpressionEvaluationError(
                f"Expected a number, got {stringify(value)!r}"
            )
        return float(number)
