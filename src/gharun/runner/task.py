"""Task runner: the unit of conditionally executed work.

A :class:`TaskRunner` wraps one body function with optional pre, condition
and post functions and runs them exactly once, producing a
:class:`TaskResult`. Steps, jobs and workflows are all expressed as task
runners, so the skip, drop and failure rules live in one place.

Order of a run:
    1. ``pre_fn``. An error aborts the task with conclusion ``failure``.
    2. ``condition_fn`` returns ``(run, conclusion)``:
       - ``(True, _)``: the body runs.
       - ``(False, conclusion)``: the body is skipped and ``conclusion``
         (usually ``skipped``) is recorded.
       - ``(False, None)``: the task does not apply here and is dropped;
         callers see ``ran=False`` and nothing is logged.
       An error fails the task; it is never treated as a skip.
    3. The body. Its return value is the conclusion; an error forces
       ``failure``.
    4. ``post_fn`` with the result, whether or not the body ran. An error
       forces ``failure``.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Generic, TypeVar

import anyio

from gharun.exceptions import TaskError
from gharun.logging import get_logger
from gharun.model.enums import Conclusion, Status

__all__ = [
    "TaskResult",
    "TaskRunner",
    "RunFn",
    "ConditionFn",
    "PreRunFn",
    "PostRunFn",
]

logger = get_logger(__name__)

ContextT = TypeVar("ContextT")

RunFn = Callable[[ContextT], Awaitable[Conclusion]]
ConditionFn = Callable[[ContextT], Awaitable[tuple[bool, Conclusion | None]]]
PreRunFn = Callable[[ContextT], Awaitable[None]]
PostRunFn = Callable[[ContextT, "TaskResult"], Awaitable[None]]


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class TaskResult:
    """Result of one task run, owned by the caller.

    Attributes:
        ran: False when the task was dropped by its condition.
        conclusion: Final conclusion; None for dropped tasks.
        started_at: When the run started.
        completed_at: When the run completed, None while running.
    """

    ran: bool
    conclusion: Conclusion | None
    started_at: datetime
    completed_at: datetime | None = None

    @property
    def duration_ms(self) -> int:
        if self.completed_at is None:
            return 0
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


class TaskRunner(Generic[ContextT]):
    """Run a body function once with optional pre, condition and post hooks.

    Attributes:
        name: Display name, also used in error messages.
        status: ``queued`` until run, ``in_progress`` while running and
            ``completed`` afterwards.

    Example:
        ```python
        async def body(ctx: RunContext) -> Conclusion:
            return Conclusion.SUCCESS

        runner = TaskRunner("Run echo hi", body, condition_fn=step_condition)
        result = await runner.run(ctx)
        ```
    """

    def __init__(
        self,
        name: str,
        run_fn: RunFn[ContextT],
        *,
        pre_fn: PreRunFn[ContextT] | None = None,
        condition_fn: ConditionFn[ContextT] | None = None,
        post_fn: PostRunFn[ContextT] | None = None,
    ) -> None:
        self.name = name
        self.status = Status.QUEUED
        self._run_fn = run_fn
        self._pre_fn = pre_fn
        self._condition_fn = condition_fn
        self._post_fn = post_fn

    async def run(self, ctx: ContextT) -> TaskResult:
        """Run the task.

        Returns:
            The result of the run.

        Raises:
            TaskError: If the pre, condition, body or post function fails.
                ``error.result`` holds the partial result.
            RuntimeError: If the task has already been run.
        """
        if self.status is not Status.QUEUED:
            raise RuntimeError(f"Task '{self.name}' has already been run")

        self.status = Status.IN_PROGRESS
        result = TaskResult(ran=True, conclusion=None, started_at=_now())

        try:
            if self._pre_fn is not None:
                try:
                    await self._pre_fn(ctx)
                except Exception as e:
                    result.conclusion = Conclusion.FAILURE
                    raise TaskError(self.name, result, e) from e

            try:
                await self._execute(ctx, result)
            finally:
                if self._post_fn is not None:
                    # Post hooks record results; they must run during cancellation
                    with anyio.CancelScope(shield=True):
                        await self._run_post(ctx, result)
        finally:
            result.completed_at = _now()
            self.status = Status.COMPLETED

        return result

    async def _execute(self, ctx: ContextT, result: TaskResult) -> None:
        if self._condition_fn is not None:
            try:
                run, conclusion = await self._condition_fn(ctx)
            except Exception as e:
                result.conclusion = Conclusion.FAILURE
                raise TaskError(self.name, result, e) from e
            result.ran = run
            result.conclusion = conclusion

        if not result.ran:
            if result.conclusion is not None:
                logger.info(
                    "task_skipped", task=self.name, conclusion=result.conclusion.value
                )
            return

        logger.info("task_started", task=self.name)
        try:
            result.conclusion = await self._run_fn(ctx)
        except Exception as e:
            result.conclusion = Conclusion.FAILURE
            raise TaskError(self.name, result, e) from e
        logger.debug(
            "task_completed", task=self.name, conclusion=result.conclusion.value
        )

    async def _run_post(self, ctx: ContextT, result: TaskResult) -> None:
        assert self._post_fn is not None
        try:
            await self._post_fn(ctx, result)
        except Exception as e:
            result.conclusion = Conclusion.FAILURE
            raise TaskError(self.name, result, e) from e
