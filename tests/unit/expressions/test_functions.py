"""Tests for the built-in expression functions."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from gharun.expressions import (
    ExpressionEvaluationError,
    MappingVariableProvider,
    parse_expression,
)
from gharun.expressions.functions import FUNCTIONS

Evaluate = Callable[[str], Any]

HELLO_WORLD_SHA256 = "7f83b1657ff1fc53b92dc18148a1d65dfc2d4b1fa3d677284addd200126d9069"
FOO_BAR_SHA256 = "b86691d0513ea10d252be103dba3459b45f4d4bb3aa5b07bd5460f5ef0357fc8"
BAR_FOO_SHA256 = "14d53b936bfc2c45b26e84f74742f32f1449bab0ee83f6bb3410ef87b3a4d4be"


class TestStringFunctions:
    """Tests for contains, startsWith, endsWith, format and join."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("contains('foo', 'bar')", False),
            ("contains('Hello World', 'WORLD')", True),
            ("contains(foo.nested.slice.*.foo, 'bar')", True),
            ("contains(foo.nested.slice.*.foo, 'tux')", False),
            ("contains(fromJson('[\"foo\", \"bar\"]'), 'bar')", True),
            ("contains(fromJson('[1, 2]'), '2')", True),
            ("contains(join(foo.nested.slice.*.foo, '|'), 'baz')", True),
            ("startsWith('Hello World', 'hell')", True),
            ("startsWith('foo', 'bar')", False),
            ("endsWith('Hello World', 'World')", True),
            ("endsWith('foo', 'bar')", False),
            ("STARTSWITH('abc', 'a')", True),
        ],
    )
    def test_predicates(
        self, evaluate_text: Evaluate, text: str, expected: bool
    ) -> None:
        assert evaluate_text(text) is expected

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("format('Hello {0}', 'World')", "Hello World"),
            ("format('{{ Hello {0}{1} }}', 'World', '!')", "{ Hello World! }"),
            ("format('{1}{0}{1}', 'a', 'b')", "bab"),
            ("format('{0} {1} {2}', null, true, 1.0)", " true 1"),
            ("format('no placeholders')", "no placeholders"),
            ("format('{0}', foo.nested.slice[0])", '{"foo":"bar"}'),
        ],
    )
    def test_format(
        self, evaluate_text: Evaluate, text: str, expected: str
    ) -> None:
        assert evaluate_text(text) == expected

    @pytest.mark.parametrize(
        "text",
        [
            "format('{1}', 'only one')",
            "format('{0')",
            "format('a } b')",
            "format('{x}', 1)",
        ],
    )
    def test_format_errors(self, evaluate_text: Evaluate, text: str) -> None:
        with pytest.raises(ExpressionEvaluationError, match="Invalid format string"):
            evaluate_text(text)

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("join(foo.nested.slice.*.foo, '|')", "bar|baz|qux"),
            ("join(fromJson('[\"foo\", \"bar\"]'))", "foo,bar"),
            ("join('scalar', '|')", "scalar"),
            ("join(fromJson('[1, true, null]'), '-')", "1-true-"),
        ],
    )
    def test_join(
        self, evaluate_text: Evaluate, text: str, expected: str
    ) -> None:
        assert evaluate_text(text) == expected


class TestJsonFunctions:
    """Tests for toJSON and fromJSON."""

    def test_to_json_is_compact_with_sorted_keys(
        self, evaluate_text: Evaluate
    ) -> None:
        result = evaluate_text("toJSON(fromJSON('{\"b\": 1, \"a\": [true, null]}'))")

        assert result == '{"a":[true,null],"b":1}'

    def test_to_json_of_scalars(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("toJson('text')") == '"text"'
        assert evaluate_text("toJson(null)") == "null"

    def test_from_json_values(self, evaluate_text: Evaluate) -> None:
        assert evaluate_text("fromJson('{\"a\": {\"b\": 2}}').a.b") == 2
        assert evaluate_text("fromJson('true')") is True

    def test_from_json_invalid(self, evaluate_text: Evaluate) -> None:
        with pytest.raises(ExpressionEvaluationError, match="invalid JSON"):
            evaluate_text("fromJson('{not json')")


class TestStatusFunctions:
    """Tests for success, failure, cancelled and always."""

    @pytest.mark.parametrize(
        ("status", "success", "failure", "cancelled"),
        [
            ("success", True, False, False),
            ("failure", False, True, False),
            ("cancelled", False, False, True),
        ],
    )
    def test_status_functions_read_job_status(
        self, status: str, success: bool, failure: bool, cancelled: bool
    ) -> None:
        provider = MappingVariableProvider({"job": {"status": status}})

        assert parse_expression("success()").evaluate(provider) is success
        assert parse_expression("failure()").evaluate(provider) is failure
        assert parse_expression("cancelled()").evaluate(provider) is cancelled
        assert parse_expression("always()").evaluate(provider) is True


class TestCalls:
    """Tests for function lookup and arity checks."""

    def test_unknown_function(self, evaluate_text: Evaluate) -> None:
        with pytest.raises(ExpressionEvaluationError, match="Unknown function"):
            evaluate_text("nope(1)")

    @pytest.mark.parametrize(
        ("text", "message"),
        [
            ("contains('a')", "expects 2 argument"),
            ("always(1)", "expects 0 argument"),
            ("join()", "expects 1 to 2 argument"),
            ("hashFiles()", "expects at least 1 argument"),
        ],
    )
    def test_arity(self, evaluate_text: Evaluate, text: str, message: str) -> None:
        with pytest.raises(ExpressionEvaluationError, match=message):
            evaluate_text(text)

    def test_registry_is_keyed_by_lowercase_name(self) -> None:
        assert "startswith" in FUNCTIONS
        assert FUNCTIONS["tojson"].name == "toJSON"


class TestHashFiles:
    """Tests for hashFiles, relative to the provider's workspace."""

    @pytest.fixture
    def workspace(self, tmp_path: Path) -> Path:
        testdata = tmp_path / "testdata"
        (testdata / "nested" / "foo").mkdir(parents=True)
        (testdata / "nested" / "bar").mkdir(parents=True)
        return tmp_path

    def _hash(self, workspace: Path, text: str) -> Any:
        provider = MappingVariableProvider({}, workspace=workspace)
        return parse_expression(text).evaluate(provider)

    def test_single_file(self, workspace: Path) -> None:
        (workspace / "testdata" / "file-1.txt").write_text("Hello World!")

        result = self._hash(workspace, "hashFiles('./testdata/file-*.txt')")

        assert result == HELLO_WORLD_SHA256

    def test_multiple_files_in_match_order(self, workspace: Path) -> None:
        (workspace / "testdata" / "file-2.txt").write_text("Foo Bar!")
        (workspace / "testdata" / "file-1.txt").write_text("Hello World!")

        result = self._hash(workspace, "hashFiles('./testdata/file-*.txt')")

        assert result == HELLO_WORLD_SHA256 + FOO_BAR_SHA256

    def test_nested_directories(self, workspace: Path) -> None:
        nested = workspace / "testdata" / "nested"
        (nested / "file-1.txt").write_text("Hello World!")
        (nested / "foo" / "file-2.txt").write_text("Foo Bar!")
        (nested / "bar" / "file-3.txt").write_text("Bar Foo!")

        result = self._hash(workspace, "hashFiles('./testdata/nested/**/file-*.txt')")

        assert result == BAR_FOO_SHA256 + FOO_BAR_SHA256

    def test_no_match_is_empty(self, workspace: Path) -> None:
        missing = "hashFiles('./testdata/non-extant-file.txt')"
        assert self._hash(workspace, missing) == ""
        assert (
            self._hash(workspace, "hashFiles('**/non-extant', '**/more-non-extant')")
            == ""
        )

    def test_files_matched_twice_are_hashed_once(self, workspace: Path) -> None:
        (workspace / "testdata" / "file-1.txt").write_text("Hello World!")
        (workspace / "testdata" / "file-2.txt").write_text("Foo Bar!")

        result = self._hash(
            workspace,
            "hashFiles('testdata/file-1.txt', 'testdata/file-*.txt')",
        )

        assert result == HELLO_WORLD_SHA256 + FOO_BAR_SHA256

    def test_directories_are_ignored(self, workspace: Path) -> None:
        assert self._hash(workspace, "hashFiles('testdata/nested/*')") == ""
