from __future__ import annotations


class GharunError(Exception):
    """Base exception class for all gharun errors.

    Catch this at the outermost boundary to report any gharun failure while
    letting unrelated exceptions propagate.

    Attributes:
        message: Human-readable error message describing what went wrong.
    """

    def __init__(self, message: str) -> None:
        """Initialize the GharunError.

        Args:
            message: Human-readable error message.
        """
        self.message = message
        super().__init__(message)
