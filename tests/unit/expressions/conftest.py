from __future__ import annotations

import math
from collections.abc import Callable
from typing import Any

import pytest

from gharun.expressions import MappingVariableProvider, parse_expression


@pytest.fixture
def contexts() -> dict[str, Any]:
    """Contexts shared by the evaluation tests."""
    return {
        "foo": {
            "bar": "baz",
            "nested": {
                "some": "value",
                "slice": [{"foo": "bar"}, {"foo": "baz"}, {"foo": "qux"}],
            },
        },
        "job": {"status": "success"},
        "infinity": math.inf,
        "nan": math.nan,
    }


@pytest.fixture
def provider(contexts: dict[str, Any]) -> MappingVariableProvider:
    return MappingVariableProvider(contexts)


@pytest.fixture
def evaluate_text(provider: MappingVariableProvider) -> Callable[[str], Any]:
    """Parse and evaluate an expression against the shared contexts."""

    def evaluate(text: str) -> Any:
        return parse_expression(text).evaluate(provider)

    return evaluate
