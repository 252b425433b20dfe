"""The ``${{ }}`` expression language.

Expressions appear throughout workflow documents (``if`` conditions,
``env`` values, ``run`` scripts, job ``outputs``) and resolve against the
contexts of a running job through a :class:`VariableProvider`.

Module Structure
----------------
- grammar.lark / parser.py: parse ``${{ }}`` text into an AST (nodes.py)
- evaluator.py: reduce an AST to a value
- values.py: truthiness, number coercion, comparison, property lookup
- functions.py: built-in functions (contains, format, hashFiles, ...)
- scalars.py: literal-or-expression document types
- conditions.py: ``if`` handling with the implicit ``success()`` guard
- errors.py: ExpressionSyntaxError, ExpressionEvaluationError

Examples
--------
    >>> provider = MappingVariableProvider({"matrix": {"os": "linux"}})
    >>> parse_expression("matrix.os == 'LINUX'").evaluate(provider)
    True
"""

from __future__ import annotations

from gharun.expressions.conditions import (
    evaluate_condition,
    parse_condition,
    uses_status_function,
)
from gharun.expressions.errors import (
    ExpressionError,
    ExpressionEvaluationError,
    ExpressionSyntaxError,
)
from gharun.expressions.evaluator import evaluate
from gharun.expressions.parser import (
    Expression,
    is_expression,
    parse_expression,
    parse_expressions,
)
from gharun.expressions.protocols import (
    MappingVariableProvider,
    VariableProvider,
    WorkspaceProvider,
)
from gharun.expressions.scalars import ExprBool, ExprFloat, ExprInt, ExprString
from gharun.expressions.values import is_truthy, stringify, to_json

__all__ = [
    # Parsing
    "Expression",
    "is_expression",
    "parse_expression",
    "parse_expressions",
    # Evaluation
    "evaluate",
    "evaluate_condition",
    "parse_condition",
    "uses_status_function",
    "is_truthy",
    "stringify",
    "to_json",
    # Providers
    "MappingVariableProvider",
    "VariableProvider",
    "WorkspaceProvider",
    # Scalars
    "ExprBool",
    "ExprFloat",
    "ExprInt",
    "ExprString",
    # Errors
    "ExpressionError",
    "ExpressionEvaluationError",
    "ExpressionSyntaxError",
]
