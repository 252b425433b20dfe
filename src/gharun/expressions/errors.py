"""Expression-specific error types.

Parse errors are raised when a ``${{ }}`` expression is decoded, evaluation
errors when it is resolved against a variable provider.
"""

from __future__ import annotations

from gharun.exceptions import GharunError


class ExpressionError(GharunError):
    """Base exception for all expression-related errors.

    Attributes:
        message: Human-readable error message.
        expression: The expression that caused the error (if known).
    """

    def __init__(
        self,
        message: str,
        expression: str | None = None,
    ) -> None:
        """Initialize the ExpressionError.

        Args:
            message: Human-readable error message.
            expression: The expression that caused the error.
        """
        self.expression = expression
        super().__init__(message)


class ExpressionSyntaxError(ExpressionError):
    """Exception raised for syntax errors in ${{ }} expressions.

    Attributes:
        message: Human-readable error message.
        expression: The expression that failed to parse.
        position: Character position in the expression where the error occurred.
    """

    def __init__(
        self,
        message: str,
        expression: str,
        position: int = 0,
    ) -> None:
        """Initialize the ExpressionSyntaxError.

        Args:
            message: Human-readable error message.
            expression: The expression that failed to parse.
            position: Character position where the error occurred.
        """
        self.position = position
        if position > 0 and expression:
            error_line = f"{expression}\n{' ' * position}^"
            full_message = f"{message} at position {position}:\n{error_line}"
        else:
            full_message = f"{message}: {expression}"
        super().__init__(full_message, expression=expression)


class ExpressionEvaluationError(ExpressionError):
    """Exception raised for runtime evaluation errors in expressions.

    Raised when an expression parses correctly but cannot be evaluated:
    unknown variables, wrong function arity, or comparisons between
    unsupported kinds.

    Attributes:
        message: Human-readable error message.
        reason: The error message without expression context.
        expression: The expression that failed to evaluate (if known).
        context_vars: Names of available variables (for debugging).
    """

    def __init__(
        self,
        message: str,
        expression: str | None = None,
        context_vars: tuple[str, ...] = (),
    ) -> None:
        """Initialize the ExpressionEvaluationError.

        Args:
            message: Human-readable error message.
            expression: The expression that failed to evaluate.
            context_vars: Names of available variables in the context.
        """
        self.reason = message
        self.context_vars = context_vars
        full_message = message
        if expression:
            full_message = f"{full_message} in expression: {expression}"
        if context_vars:
            available = ", ".join(sorted(context_vars))
            full_message = f"{full_message}\nAvailable variables: {available}"
        super().__init__(full_message, expression=expression)
