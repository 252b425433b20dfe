from __future__ import annotations

from pathlib import Path

from gharun.exceptions.base import GharunError


class WorkflowError(GharunError):
    """Base exception for workflow-related errors.

    Attributes:
        message: Human-readable error message.
        workflow_name: Name of the workflow that failed (if known).
    """

    def __init__(self, message: str, workflow_name: str | None = None) -> None:
        """Initialize the WorkflowError.

        Args:
            message: Human-readable error message.
            workflow_name: Optional name of the workflow that failed.
        """
        self.workflow_name = workflow_name
        super().__init__(message)


class WorkflowParseError(WorkflowError):
    """Raised when a workflow or action document cannot be loaded.

    Covers YAML syntax errors, schema violations and malformed ``${{ }}``
    expressions found while decoding the document.

    Attributes:
        message: Human-readable error message.
        path: File the document was read from (if any).
    """

    def __init__(self, message: str, path: Path | str | None = None) -> None:
        self.path = path
        if path is not None:
            message = f"{path}: {message}"
        super().__init__(message)


class JobNotFoundError(WorkflowError):
    """Raised when a requested or needed job id is not in the workflow.

    Attributes:
        message: Human-readable error message.
        job_id: The job id that could not be found.
    """

    def __init__(self, job_id: str, workflow_name: str | None = None) -> None:
        self.job_id = job_id
        super().__init__(f"job {job_id!r} not found", workflow_name=workflow_name)


class PlanError(WorkflowError):
    """Raised when a workflow cannot be planned (empty, or cyclic needs)."""
