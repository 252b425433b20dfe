"""Tests for expression evaluation: coercion, logical operators and contexts."""

from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any

import pytest

from gharun.expressions import (
    ExpressionEvaluationError,
    MappingVariableProvider,
    evaluate,
    is_truthy,
    parse_expression,
)
from gharun.model.enums import Conclusion
from gharun.model.runs import StepContext

Evaluate = Callable[[str], Any]


class TestCompare:
    """Tests for comparison operators and loose coercion."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("1 == 1", True),
            ("1 != 1", False),
            ("1 > 1", False),
            ("1 >= 1", True),
            ("1 < 1", False),
            ("1 <= 1", True),
            ("(1 == 1) && !(2 == 2)", False),
            ("(1 == 1) || !(2 == 2)", True),
            ("null == 0", True),
            ("null == ''", True),
            ("'' == false", True),
            ("'' == 0", True),
            ("true == 1", True),
            ("true == '1'", True),
            ("1 == '1'", True),
            ("1 == true", True),
            ("0 == false", True),
            ("'TesT' == 'test'", True),
            ("'abc' < 'ABD'", True),
            ("'0x10' == 16", True),
            ("' 2 ' == 2", True),
            ("'abc' == 0", False),
            ("null == null", True),
            ("null == false", True),
        ],
    )
    def test_coercion_table(
        self, evaluate_text: Evaluate, text: str, expected: bool
    ) -> None:
        assert evaluate_text(text) is expected

    def test_nan_is_never_equal(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("NaN == NaN") is False
        assert evaluate_text("'abc' == 'abc' && 'abc' != 1") is True

    def test_objects_cannot_be_compared(self, evaluate_text: Evaluate) -> None:
        with pytest.raises(ExpressionEvaluationError, match="Cannot compare"):
            evaluate_text("foo == foo")

    def test_object_and_scalar_compare_as_numbers(
        self, evaluate_text: Evaluate
    ) -> None:
        assert evaluate_text("foo == 1") is False


class TestLogical:
    """Tests for && and ||, which return an operand rather than a boolean."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("true && true", True),
            ("true && false", False),
            ("true && null", None),
            ("true && 0", 0),
            ("true && ''", ""),
            ("true && 'foo'", "foo"),
            ("true && 0.1", 0.1),
            ("1 && 'foo'", "foo"),
            ("false && true", False),
            ("null && true", None),
            ("'' && 'foo'", ""),
            ("true || false", True),
            ("1 || true", 1),
            ("false || 0", 0),
            ("false || null", None),
            ("'' || 'foo'", "foo"),
            ("null || 'default'", "default"),
        ],
    )
    def test_returns_operand(
        self, evaluate_text: Evaluate, text: str, expected: Any
    ) -> None:
        result = evaluate_text(text)

        assert result == expected
        assert type(result) is type(expected)

    def test_infinity_and_nan_operands(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("true && Infinity") == math.inf
        assert math.isnan(evaluate_text("true && NaN"))
        assert evaluate_text("NaN || 'fallback'") == "fallback"

    def test_and_short_circuits(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("false && unknown.value") is False

    def test_or_short_circuits(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("'x' || unknown.value") == "x"

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("!true", False),
            ("!null", True),
            ("!''", True),
            ("!'0'", False),
            ("!0", True),
            ("!foo", False),
            ("!!'x'", True),
        ],
    )
    def test_not_uses_truthiness(
        self, evaluate_text: Evaluate, text: str, expected: bool
    ) -> None:
        assert evaluate_text(text) is expected


class TestContexts:
    """Tests for variable resolution and property access."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("foo.bar", "baz"),
            ("foo.nested.some", "value"),
            ("foo.nested.slice[0].foo", "bar"),
            ("foo.nested.slice[1].foo", "baz"),
            ("foo.nested.slice[2].foo", "qux"),
            ("foo.nested.slice[3].foo", None),
            ("foo.nested.slice[0].bar", None),
            ("foo.missing", None),
            ("foo['bar']", "baz"),
            ("FOO.BAR", "baz"),
            ("foo.nested.slice[-1]", None),
            ("foo.bar[0]", None),
        ],
    )
    def test_property_access(
        self, evaluate_text: Evaluate, text: str, expected: Any
    ) -> None:
        assert evaluate_text(text) == expected

    def test_wildcard_over_list(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("foo.nested.slice.*.foo") == ["bar", "baz", "qux"]

    def test_wildcard_over_object(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("foo.nested.*") == [
            "value",
            [{"foo": "bar"}, {"foo": "baz"}, {"foo": "qux"}],
        ]

    def test_unknown_variable_raises(self, evaluate_text: Evaluate) -> None:
        with pytest.raises(ExpressionEvaluationError) as exc_info:
            evaluate_text("unknown.value")

        assert "unknown" in str(exc_info.value)
        assert "foo" in exc_info.value.context_vars

    def test_run_records_resolve_by_alias(self) -> None:
        provider = MappingVariableProvider(
            {
                "steps": {
                    "build": StepContext(
                        outputs={"path": "dist"}, conclusion=Conclusion.SUCCESS
                    )
                }
            }
        )

        assert parse_expression("steps.build.outputs.path").evaluate(provider) == "dist"
        assert (
            parse_expression("steps.build.conclusion == 'success'").evaluate(provider)
            is True
        )
        assert parse_expression("steps.build.outcome").evaluate(provider) is None

    def test_unknown_node_kind_raises(self) -> None:
        with pytest.raises(
            ExpressionEvaluationError, match="Unsupported expression node"
        ):
            evaluate(object(), MappingVariableProvider({}))  # type: ignore[arg-type]


class TestTruthiness:
    """Tests for is_truthy."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, False),
            (False, False),
            (0, False),
            (0.0, False),
            (math.nan, False),
            ("", False),
            (True, True),
            (-1, True),
            ("false", True),
            ("0", True),
            ({}, True),
            ([], True),
        ],
    )
    def test_is_truthy(self, value: Any, expected: bool) -> None:
        assert is_truthy(value) is expected
