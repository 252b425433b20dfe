"""Job planning: compose step task runners into job run task runners.

A job run executes, in order: ``Set up job`` (every step's setup), every
pre phase, every main phase, every post phase, then ``Complete job``, which
evaluates the job outputs. The job's running status starts at ``success``
and the first non-success conclusion of a phase sticks; that status is what
``success()``, ``failure()`` and ``cancelled()`` see.

A job with a matrix is planned as one run per combination.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import anyio

from gharun.constants import (
    COMPLETE_JOB_TASK_NAME,
    MAX_JOB_OUTPUT_SIZE,
    MAX_TOTAL_JOB_OUTPUT_SIZE,
    MB,
    SETUP_JOB_TASK_NAME,
)
from gharun.context import RunContext
from gharun.exceptions import TaskError
from gharun.logging import bind_context, get_logger
from gharun.model.action import ActionLoader
from gharun.model.enums import Conclusion
from gharun.model.matrix import Combination, format_combination
from gharun.model.workflow import Defaults, Job
from gharun.runner.executor import CancelSignal, Executor
from gharun.runner.steps import BaseStep, StepRuntime, new_step, step_condition
from gharun.runner.task import TaskResult, TaskRunner

__all__ = [
    "JobRunPlan",
    "plan_job",
    "plan_job_run",
    "roll_up",
    "needs_status",
    "matrix_combinations",
]

logger = get_logger(__name__)


@dataclass(slots=True)
class JobRunPlan:
    """One planned run of a job.

    Attributes:
        run_id: Unique id of the run within the workflow run.
        name: Display name, with matrix values for matrix runs.
        matrix: The combination of this run; empty without a matrix.
        runner: Task runner executing the run against a job's RunContext.
        cancel: Set to stop the run before its next step.
    """

    run_id: str
    name: str
    matrix: Combination
    runner: TaskRunner[RunContext]
    cancel: CancelSignal = field(default_factory=CancelSignal)


def roll_up(status: Conclusion, conclusion: Conclusion | None) -> Conclusion:
    """Fold a phase conclusion into the running job status.

    The first non-success conclusion wins; later ones never replace it.
    """
    if status is Conclusion.SUCCESS and conclusion is not None:
        return conclusion
    return status


def needs_status(ctx: RunContext, job: Job) -> Conclusion:
    """Status a job starts with, derived from the results of its needs.

    ``success`` when every need succeeded. Otherwise ``failure`` if any
    need failed, then ``cancelled``, then ``skipped``.
    """
    jobs = ctx.workflow_run.jobs if ctx.workflow_run is not None else {}
    results = [jobs[need].result for need in job.needs if need in jobs]
    for conclusion in (Conclusion.FAILURE, Conclusion.CANCELLED, Conclusion.SKIPPED):
        if conclusion in results:
            return conclusion
    return Conclusion.SUCCESS


def matrix_combinations(job: Job) -> list[Combination] | None:
    """Combinations a job runs with; None when the job declares no matrix."""
    if job.strategy is None:
        return None
    matrix = job.strategy.matrix
    if not (matrix.dimensions or matrix.include or matrix.exclude):
        return None
    return matrix.generate_combinations()


def _strategy_context(
    job: Job, ctx: RunContext, index: int, total: int
) -> dict[str, Any]:
    strategy = job.strategy
    fail_fast = strategy.fail_fast.resolve(ctx) if strategy is not None else True
    max_parallel: int = total
    if strategy is not None and strategy.max_parallel is not None:
        max_parallel = strategy.max_parallel.resolve(ctx)
    return {
        "fail-fast": fail_fast,
        "job-index": index,
        "job-total": total,
        "max-parallel": max_parallel,
    }


def plan_job_run(
    job: Job,
    *,
    run_id: str,
    executor: Executor,
    actions: ActionLoader,
    defaults: tuple[Defaults, ...] = (),
    matrix: Combination | None = None,
    index: int = 0,
    total: int = 1,
) -> JobRunPlan:
    """Plan a single run of ``job``.

    Returns:
        The plan; run it with ``plan.runner.run(ctx)`` on a context created
        for this run.
    """
    matrix = dict(matrix or {})
    name = job.display_name
    if matrix and not (job.name is not None and job.name.is_expression):
        name = f"{name} ({format_combination(matrix)})"

    cancel = CancelSignal()
    runtime = StepRuntime(
        executor=executor,
        actions=actions,
        defaults=(job.defaults, *defaults),
        cancel=cancel,
    )
    steps: list[BaseStep] = [new_step(step, runtime) for step in job.steps]
    outputs: dict[str, str] = {}

    setups: list[BaseStep] = []
    pre: list[TaskRunner[RunContext]] = []
    main: list[TaskRunner[RunContext]] = []
    post: list[TaskRunner[RunContext]] = []
    for step in steps:
        plan = step.plan()
        if plan.setup is not None:
            setups.append(plan.setup)
        if plan.pre is not None:
            pre.append(plan.pre)
        main.append(plan.main)
        if plan.post is not None:
            post.append(plan.post)

    async def set_up(ctx: RunContext) -> Conclusion:
        # The condition saw the status inherited from needs; steps start clean
        ctx.set_job_status(Conclusion.SUCCESS)
        for step in setups:
            await step.setup(ctx)
        return Conclusion.SUCCESS

    async def complete(ctx: RunContext) -> Conclusion:
        outputs.clear()
        outputs.update(_evaluate_outputs(job, ctx))
        logger.info("job_completed", job=name, conclusion=ctx.job_status.value)
        return Conclusion.SUCCESS

    tasks: list[TaskRunner[RunContext]] = [
        TaskRunner(SETUP_JOB_TASK_NAME, set_up),
        *pre,
        *main,
        *post,
        TaskRunner(COMPLETE_JOB_TASK_NAME, complete),
    ]

    async def run_job(ctx: RunContext) -> Conclusion:
        timeout = None
        if job.timeout_minutes is not None:
            timeout = job.timeout_minutes.resolve(ctx) * 60

        cancelling = False
        with anyio.move_on_after(timeout) as scope:
            for task in tasks:
                if cancel.is_set():
                    if not cancelling:
                        logger.warning("job_cancelling", job=name)
                        cancelling = True
                    # Only replaces success, an earlier failure sticks
                    ctx.set_job_status(roll_up(ctx.job_status, Conclusion.CANCELLED))
                result = await _run_task(task, ctx)
                if result.ran:
                    ctx.set_job_status(roll_up(ctx.job_status, result.conclusion))

        if scope.cancelled_caught:
            logger.error("job_timed_out", job=name, timeout_minutes=timeout / 60)
            ctx.set_job_status(roll_up(ctx.job_status, Conclusion.FAILURE))

        status = ctx.job_status
        ctx.set_job_results(status, outputs)
        return status

    # An expression name is resolved by the context once matrix values are set
    name_is_expression = job.name is not None and job.name.is_expression

    async def enter(ctx: RunContext) -> None:
        bind_context(job_id=job.id, job_run=run_id)
        ctx.set_job(
            job,
            run_id=run_id,
            name=None if name_is_expression else name,
            matrix=matrix,
            strategy=_strategy_context(job, ctx, index, total),
            status=needs_status(ctx, job),
        )

    async def condition(ctx: RunContext) -> tuple[bool, Conclusion | None]:
        return await step_condition(job.if_, ctx)

    async def leave(ctx: RunContext, result: TaskResult) -> None:
        if ctx.job_run is not None and ctx.job_run.conclusion is None:
            ctx.set_job_results(result.conclusion or Conclusion.SKIPPED, {})
        ctx.unset_job()

    runner = TaskRunner(
        f"Job: {name}", run_job, pre_fn=enter, condition_fn=condition, post_fn=leave
    )
    return JobRunPlan(
        run_id=run_id, name=name, matrix=matrix, runner=runner, cancel=cancel
    )


def plan_job(
    job: Job,
    *,
    executor: Executor,
    actions: ActionLoader,
    defaults: tuple[Defaults, ...] = (),
) -> list[JobRunPlan]:
    """Plan every run of ``job``: one per matrix combination, or one.

    A job whose matrix expands to no combinations has no runs.
    """
    combinations = matrix_combinations(job)
    if combinations is None:
        return [
            plan_job_run(
                job,
                run_id=job.id,
                executor=executor,
                actions=actions,
                defaults=defaults,
            )
        ]
    total = len(combinations)
    return [
        plan_job_run(
            job,
            run_id=f"{job.id}-{index + 1}",
            executor=executor,
            actions=actions,
            defaults=defaults,
            matrix=combination,
            index=index,
            total=total,
        )
        for index, combination in enumerate(combinations)
    ]


async def _run_task(task: TaskRunner[RunContext], ctx: RunContext) -> TaskResult:
    """Run a phase; its failure is logged and recorded, never raised."""
    try:
        return await task.run(ctx)
    except TaskError as e:
        logger.error("task_failed", task=task.name, error=str(e.cause))
        return e.result


def _evaluate_outputs(job: Job, ctx: RunContext) -> dict[str, str]:
    outputs: dict[str, str] = {}
    total_size = 0
    for key, value in job.outputs.items():
        evaluated = value.resolve(ctx)
        logger.debug("job_output_evaluated", key=key, value=evaluated)
        size = len(evaluated.encode("utf-8"))
        if size > MAX_JOB_OUTPUT_SIZE:
            logger.warning("job_output_too_large", key=key, size_mb=size // MB)
        total_size += size
        outputs[key] = evaluated
    if total_size > MAX_TOTAL_JOB_OUTPUT_SIZE:
        logger.warning("job_outputs_too_large", size_mb=total_size // MB)
    return outputs
