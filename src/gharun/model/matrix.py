"""Matrix expansion for ``strategy.matrix``.

A matrix declares dimensions (each a list of values) plus optional
``include`` and ``exclude`` lists of combinations. Expansion takes the
cartesian product of the dimensions, drops excluded combinations, then folds
the includes in.
"""

from __future__ import annotations

import itertools
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, Field, model_validator

from gharun.expressions.values import kind_of, loose_equals

__all__ = ["Combination", "Matrix", "format_combination"]

Combination = dict[str, Any]


def _matches(entry: Mapping[str, Any], combination: Mapping[str, Any]) -> bool:
    """True if every key in ``entry`` is in ``combination`` with an equal value."""
    return all(
        key in combination and _equal(value, combination[key])
        for key, value in entry.items()
    )


def _equal(left: Any, right: Any) -> bool:
    # Matrix values compare by value and kind: 1 and '1' are different entries
    return kind_of(left) is kind_of(right) and loose_equals(left, right)


class Matrix(BaseModel):
    """A ``strategy.matrix`` declaration.

    Attributes:
        dimensions: Dimension name to its ordered list of values.
        include: Combinations merged into, or appended to, the product.
        exclude: Partial combinations removed from the product.
    """

    dimensions: dict[str, list[Any]] = Field(default_factory=dict)
    include: list[Combination] = Field(default_factory=list)
    exclude: list[Combination] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def split_dimensions(cls, data: Any) -> Any:
        """Accept the document form, where dimensions sit beside include/exclude."""
        if not isinstance(data, Mapping) or "dimensions" in data:
            return data
        dimensions: dict[str, Any] = {}
        for key, value in data.items():
            if key in ("include", "exclude"):
                continue
            if not isinstance(value, list):
                raise ValueError(
                    f"matrix dimension '{key}' must be a list, "
                    f"got {type(value).__name__}"
                )
            dimensions[key] = value
        return {
            "dimensions": dimensions,
            "include": data.get("include") or [],
            "exclude": data.get("exclude") or [],
        }

    def generate_combinations(self) -> list[Combination]:
        """Expand the matrix into the list of job run combinations.

        Rules:
            - The product iterates dimensions in declaration order.
            - A combination is excluded if any exclude entry matches it.
            - An include entry whose dimension values match one or more
              original combinations is merged into each of them (its extra
              keys are added; dimension values are never overwritten). An
              entry naming no dimension matches every original combination.
            - Otherwise the include entry is appended as a new combination.
            - With no dimensions the includes are the combinations; with no
              dimensions and no includes the result is empty.

        Returns:
            New dicts; the matrix itself is never mutated.
        """
        combinations: list[Combination] = []
        if self.dimensions:
            keys = list(self.dimensions)
            for values in itertools.product(*(self.dimensions[k] for k in keys)):
                combination = dict(zip(keys, values, strict=True))
                if any(_matches(entry, combination) for entry in self.exclude):
                    continue
                combinations.append(combination)

        originals = list(combinations)
        dimension_keys = set(self.dimensions)
        for entry in self.include:
            matched = False
            for combination in originals:
                if self._include_matches(entry, combination, dimension_keys):
                    for key, value in entry.items():
                        if key not in dimension_keys:
                            combination[key] = value
                    matched = True
            if not matched:
                combinations.append(dict(entry))
        return combinations

    @staticmethod
    def _include_matches(
        entry: Mapping[str, Any],
        combination: Mapping[str, Any],
        dimension_keys: set[str],
    ) -> bool:
        return all(
            _equal(value, combination[key])
            for key, value in entry.items()
            if key in dimension_keys
        )


def format_combination(combination: Mapping[str, Any]) -> str:
    """Render a combination for display, e.g. ``os:ubuntu, node:18``."""
    return ", ".join(f"{key}:{value}" for key, value in combination.items())
