from __future__ import annotations

from typing import TYPE_CHECKING

from gharun.exceptions.base import GharunError

if TYPE_CHECKING:
    from gharun.runner.task import TaskResult


class RunnerError(GharunError):
    """Base exception for run-time failures of tasks, steps and executors.

    Attributes:
        message: Human-readable error message.
    """


class TaskError(RunnerError):
    """A task runner failed in its pre, condition, body or post phase.

    The partial result is kept so callers can still record the conclusion
    and timings of the failed task.

    Attributes:
        message: "<task name>: <underlying error>".
        task_name: Name of the task that failed.
        result: Result recorded for the task up to the failure.
        cause: The underlying exception.
    """

    def __init__(
        self, task_name: str, result: TaskResult, cause: BaseException
    ) -> None:
        self.task_name = task_name
        self.result = result
        self.cause = cause
        super().__init__(f"{task_name}: {cause}")


class ExecutorError(RunnerError):
    """A command or container exited with a non-zero status.

    Attributes:
        message: Human-readable error message.
        exit_code: Exit status reported by the executor.
        stderr: Captured standard error, for diagnostics.
    """

    def __init__(self, message: str, exit_code: int, stderr: str = "") -> None:
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(message)


class StepTimeoutError(RunnerError):
    """A step exceeded its ``timeout-minutes``.

    Attributes:
        message: Human-readable error message.
        timeout_minutes: The limit that was exceeded.
    """

    def __init__(self, message: str, timeout_minutes: float) -> None:
        self.timeout_minutes = timeout_minutes
        super().__init__(message)


class StepCancelledError(RunnerError):
    """A running step was cancelled because a sibling matrix run failed."""


class ActionError(RunnerError):
    """An action referenced by ``uses`` is missing or cannot be run.

    Attributes:
        message: Human-readable error message.
        uses: The ``uses`` reference of the step.
    """

    def __init__(self, message: str, uses: str | None = None) -> None:
        self.uses = uses
        super().__init__(message)


class WorkflowCommandError(RunnerError):
    """A ``::command::`` line on stdout could not be applied.

    Attributes:
        message: Human-readable error message.
        command: Name of the workflow command.
    """

    def __init__(self, message: str, command: str | None = None) -> None:
        self.command = command
        super().__init__(message)
