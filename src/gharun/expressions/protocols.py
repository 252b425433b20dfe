"""Capabilities the evaluator consumes.

The evaluator never sees the run state directly; it resolves root names
through a :class:`VariableProvider`.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from gharun.expressions.errors import ExpressionEvaluationError

__all__ = ["VariableProvider", "WorkspaceProvider", "MappingVariableProvider"]


@runtime_checkable
class VariableProvider(Protocol):
    """Resolves root context names (``github``, ``steps``, ...) to values.

    Implementations raise :class:`ExpressionEvaluationError` for names they
    do not know; an unknown root is never silently ``None``.

    Example:
        A provider backed by a dict::

            class Contexts:
                def get_variable(self, name: str) -> Any:
                    try:
                        return self._values[name]
                    except KeyError:
                        raise ExpressionEvaluationError(
                            f"unknown variable: {name}"
                        ) from None
    """

    def get_variable(self, name: str) -> Any:
        """Return the value of the root context ``name`` (lowercase)."""
        ...


@runtime_checkable
class WorkspaceProvider(Protocol):
    """Provider that also knows the workspace ``hashFiles()`` globs against."""

    @property
    def workspace(self) -> Path: ...


class MappingVariableProvider:
    """Variable provider over a fixed mapping of root names.

    Lookup is case-insensitive. Used for ad-hoc evaluation (job outputs
    templates, tests) where no full run context exists.
    """

    def __init__(
        self, variables: Mapping[str, Any], workspace: Path | None = None
    ) -> None:
        self._variables = {key.lower(): value for key, value in variables.items()}
        self._workspace = workspace

    @property
    def workspace(self) -> Path:
        return self._workspace if self._workspace is not None else Path.cwd()

    def get_variable(self, name: str) -> Any:
        try:
            return self._variables[name.lower()]
        except KeyError:
            raise ExpressionEvaluationError(
                f"Unknown variable '{name}'",
                context_vars=tuple(self._variables),
            ) from None
