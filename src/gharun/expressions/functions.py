"""Built-in expression functions.

Functions receive already-evaluated arguments plus the variable provider
(status functions read ``job.status``, ``hashFiles`` reads the workspace).
Names are matched case-insensitively through :data:`FUNCTIONS`.
"""

from __future__ import annotations

import glob
import hashlib
import json
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from gharun.expressions.errors import ExpressionEvaluationError
from gharun.expressions.protocols import VariableProvider, WorkspaceProvider
from gharun.expressions.values import (
    ValueKind,
    compare,
    get_property,
    kind_of,
    loose_equals,
    stringify,
    to_json,
)

__all__ = ["BuiltinFunction", "FUNCTIONS", "call_function"]


@dataclass(frozen=True, slots=True)
class BuiltinFunction:
    """A built-in function and its accepted argument count.

    Attributes:
        name: Canonical (camelCase) name, used in error messages.
        min_args: Minimum number of arguments.
        max_args: Maximum number of arguments, None for variadic.
        impl: Callable taking the provider followed by the arguments.
    """

    name: str
    min_args: int
    max_args: int | None
    impl: Callable[..., Any]


def _contains(provider: VariableProvider, search: Any, item: Any) -> bool:
    if kind_of(search) is ValueKind.ARRAY:
        return any(loose_equals(element, item) for element in search)
    return stringify(item).casefold() in stringify(search).casefold()


def _starts_with(provider: VariableProvider, search: Any, item: Any) -> bool:
    return stringify(search).casefold().startswith(stringify(item).casefold())


def _ends_with(provider: VariableProvider, search: Any, item: Any) -> bool:
    return stringify(search).casefold().endswith(stringify(item).casefold())


def _format(provider: VariableProvider, template: Any, *args: Any) -> str:
    text = stringify(template)
    out: list[str] = []
    i = 0
    while i < len(text):
        char = text[i]
        if char == "{":
            if text.startswith("{{", i):
                out.append("{")
                i += 2
                continue
            end = text.find("}", i)
            index_text = text[i + 1 : end] if end != -1 else ""
            if not index_text.isdigit():
                raise ExpressionEvaluationError(
                    f"Invalid format string '{text}': bad placeholder at {i}"
                )
            index = int(index_text)
            if index >= len(args):
                raise ExpressionEvaluationError(
                    f"Invalid format string '{text}': "
                    f"no argument for placeholder {{{index}}}"
                )
            out.append(stringify(args[index]))
            i = end + 1
        elif char == "}":
            if not text.startswith("}}", i):
                raise ExpressionEvaluationError(
                    f"Invalid format string '{text}': unmatched '}}' at {i}"
                )
            out.append("}")
            i += 2
        else:
            out.append(char)
            i += 1
    return "".join(out)


def _join(provider: VariableProvider, value: Any, separator: Any = ",") -> str:
    if kind_of(value) is ValueKind.ARRAY:
        return stringify(separator).join(stringify(item) for item in value)
    return stringify(value)


def _to_json(provider: VariableProvider, value: Any) -> str:
    return to_json(value)


def _from_json(provider: VariableProvider, value: Any) -> Any:
    text = stringify(value)
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ExpressionEvaluationError(f"fromJSON: invalid JSON: {e}") from e


def _workspace_of(provider: VariableProvider) -> Path:
    if isinstance(provider, WorkspaceProvider):
        return Path(provider.workspace)
    return Path.cwd()


def _hash_files(provider: VariableProvider, *patterns: Any) -> str:
    """Concatenated SHA-256 hex digests of every file matching the patterns.

    Each pattern is expanded on its own (``**`` matches one path segment)
    and its matches are sorted. Files matched by more than one pattern are
    hashed once.
    """
    root = _workspace_of(provider)
    seen: set[Path] = set()
    digests: list[str] = []
    for pattern in patterns:
        for match in sorted(glob.glob(stringify(pattern), root_dir=root)):
            path = (root / match).resolve()
            if path in seen or not path.is_file():
                continue
            seen.add(path)
            digests.append(hashlib.sha256(path.read_bytes()).hexdigest())
    return "".join(digests)


def _status_is(status: str) -> Callable[[VariableProvider], bool]:
    def check(provider: VariableProvider) -> bool:
        job = provider.get_variable("job")
        return compare("==", get_property(job, "status"), status)

    return check


def _always(provider: VariableProvider) -> bool:
    return True


FUNCTIONS: dict[str, BuiltinFunction] = {
    function.name.lower(): function
    for function in (
        BuiltinFunction("contains", 2, 2, _contains),
        BuiltinFunction("startsWith", 2, 2, _starts_with),
        BuiltinFunction("endsWith", 2, 2, _ends_with),
        BuiltinFunction("format", 1, None, _format),
        BuiltinFunction("join", 1, 2, _join),
        BuiltinFunction("toJSON", 1, 1, _to_json),
        BuiltinFunction("fromJSON", 1, 1, _from_json),
        BuiltinFunction("hashFiles", 1, None, _hash_files),
        BuiltinFunction("always", 0, 0, _always),
        BuiltinFunction("success", 0, 0, _status_is("success")),
        BuiltinFunction("failure", 0, 0, _status_is("failure")),
        BuiltinFunction("cancelled", 0, 0, _status_is("cancelled")),
    )
}


def call_function(name: str, provider: VariableProvider, args: list[Any]) -> Any:
    """Invoke a built-in by (case-insensitive) name.

    Raises:
        ExpressionEvaluationError: For unknown functions or a wrong number
            of arguments.
    """
    function = FUNCTIONS.get(name.lower())
    if function is None:
        raise ExpressionEvaluationError(f"Unknown function '{name}'")
    if len(args) < function.min_args or (
        function.max_args is not None and len(args) > function.max_args
    ):
        if function.max_args is None:
            expected = f"at least {function.min_args}"
        elif function.min_args == function.max_args:
            expected = str(function.min_args)
        else:
            expected = f"{function.min_args} to {function.max_args}"
        raise ExpressionEvaluationError(
            f"Function '{function.name}' expects {expected} argument(s), "
            f"got {len(args)}"
        )
    return function.impl(provider, *args)
