"""gharun exception hierarchy.

All exceptions can be imported from this package:
    from gharun.exceptions import GharunError, TaskError, WorkflowError

Expression errors live in ``gharun.expressions.errors`` and also derive from
:class:`GharunError`.
"""

from __future__ import annotations

# Base exception
from gharun.exceptions.base import GharunError

# Configuration exceptions
from gharun.exceptions.config import ConfigError

# Runner-related exceptions
from gharun.exceptions.runner import (
    ActionError,
    ExecutorError,
    RunnerError,
    StepCancelledError,
    StepTimeoutError,
    TaskError,
    WorkflowCommandError,
)

# Workflow-related exceptions
from gharun.exceptions.workflow import (
    JobNotFoundError,
    PlanError,
    WorkflowError,
    WorkflowParseError,
)

__all__ = [
    # Base
    "GharunError",
    # Config
    "ConfigError",
    # Runner
    "ActionError",
    "ExecutorError",
    "RunnerError",
    "StepCancelledError",
    "StepTimeoutError",
    "TaskError",
    "WorkflowCommandError",
    # Workflow
    "JobNotFoundError",
    "PlanError",
    "WorkflowError",
    "WorkflowParseError",
]
