"""Workflow planning: order jobs by ``needs`` and run them as one task.

Jobs start as soon as every job they need has finished; jobs with no edge
between them run concurrently, bounded by ``RunnerConfig.max_parallel``.
Matrix runs of a job are bounded by ``strategy.max-parallel`` and, with
``fail-fast``, the first failing run cancels its siblings.

Each job run gets its own :class:`~gharun.context.RunContext` from
:meth:`RunContext.for_job`, sharing only the workflow run record, in which
every job writes its own ``jobs.<id>`` entry.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import anyio

from gharun.config import RunnerConfig
from gharun.context import RunContext
from gharun.exceptions import GharunError, JobNotFoundError, PlanError, TaskError
from gharun.logging import bind_context, get_logger
from gharun.model.action import ActionLoader
from gharun.model.enums import Conclusion
from gharun.model.runs import JobResult, JobRun, WorkflowRun
from gharun.model.workflow import Job, Workflow
from gharun.runner.executor import Executor, LocalExecutor
from gharun.runner.job import JobRunPlan, matrix_combinations, plan_job
from gharun.runner.task import TaskResult, TaskRunner

__all__ = ["WorkflowPlan", "order_jobs", "plan_workflow", "run_workflow"]

logger = get_logger(__name__)


@dataclass(slots=True)
class WorkflowPlan:
    """A planned workflow run.

    Attributes:
        workflow: The workflow document.
        order: Ids of the jobs to run; every job follows the jobs it needs.
        jobs: Planned runs per job id, in ``order``.
        unselected: Ids of jobs that are recorded ``skipped`` without running.
        runner: Task runner executing the whole workflow.
    """

    workflow: Workflow
    order: list[str]
    jobs: dict[str, list[JobRunPlan]]
    unselected: list[str] = field(default_factory=list)
    runner: TaskRunner[RunContext] | None = None


def order_jobs(workflow: Workflow, job_ids: Iterable[str] | None = None) -> list[str]:
    """Depth-first order of the requested jobs and everything they need.

    Args:
        workflow: Workflow holding the jobs.
        job_ids: Jobs to run; None runs every job.

    Raises:
        PlanError: If the workflow has no jobs, a job needs an unknown job,
            or ``needs`` form a cycle.
        JobNotFoundError: If a requested job id is not in the workflow.
    """
    if not workflow.jobs:
        raise PlanError("workflow has no jobs", workflow_name=workflow.name)

    requested = list(job_ids) if job_ids else list(workflow.jobs)
    for job_id in requested:
        if job_id not in workflow.jobs:
            raise JobNotFoundError(job_id, workflow_name=workflow.name)

    order: list[str] = []
    visiting: set[str] = set()
    visited: set[str] = set()

    def visit(job_id: str, path: list[str]) -> None:
        if job_id in visited:
            return
        if job_id in visiting:
            cycle = " -> ".join([*path[path.index(job_id) :], job_id])
            raise PlanError(f"dependency cycle: {cycle}", workflow_name=workflow.name)
        visiting.add(job_id)
        for need in workflow.jobs[job_id].needs:
            if need not in workflow.jobs:
                raise PlanError(
                    f"job {job_id!r} needs unknown job {need!r}",
                    workflow_name=workflow.name,
                )
            visit(need, [*path, job_id])
        visiting.discard(job_id)
        visited.add(job_id)
        order.append(job_id)

    for job_id in requested:
        visit(job_id, [])
    return order


def plan_workflow(
    workflow: Workflow,
    config: RunnerConfig,
    job_ids: Iterable[str] | None = None,
    *,
    executor: Executor | None = None,
    actions: ActionLoader | None = None,
) -> WorkflowPlan:
    """Plan a run of ``workflow``.

    Planning validates the whole job graph before anything runs.

    Args:
        workflow: Workflow to run.
        config: Runner configuration.
        job_ids: Jobs to run (their needs are added); None runs every job.
        executor: Executor for step commands; defaults to a
            :class:`LocalExecutor` on the workspace.
        actions: Loader for ``uses:`` actions; defaults to the configured
            actions directory.

    Returns:
        The plan; run it with ``plan.runner.run(RunContext(config))``.
    """
    order = order_jobs(workflow, job_ids)
    executor = executor or LocalExecutor(config.workspace)
    actions = actions or ActionLoader(
        config.workspace, config.resolve(config.actions_dir)
    )
    defaults = (workflow.defaults,)

    plan = WorkflowPlan(
        workflow=workflow,
        order=order,
        jobs={
            job_id: plan_job(
                workflow.jobs[job_id],
                executor=executor,
                actions=actions,
                defaults=defaults,
            )
            for job_id in order
        },
        unselected=[job_id for job_id in workflow.jobs if job_id not in order],
    )
    logger.debug(
        "workflow_planned",
        workflow=workflow.name,
        jobs=order,
        unselected=plan.unselected,
    )

    # Job conclusions as the workflow sees them (continue-on-error applied)
    effective: dict[str, Conclusion] = {}

    async def run_jobs(ctx: RunContext) -> Conclusion:
        finished = {job_id: anyio.Event() for job_id in order}
        limiter = (
            anyio.Semaphore(config.max_parallel) if config.max_parallel > 0 else None
        )

        async def run_one(job_id: str) -> None:
            job = workflow.jobs[job_id]
            try:
                for need in job.needs:
                    await finished[need].wait()
                effective[job_id] = await _run_job(
                    job, plan.jobs[job_id], ctx, limiter
                )
            finally:
                finished[job_id].set()

        async with anyio.create_task_group() as tg:
            for job_id in order:
                tg.start_soon(run_one, job_id)

        for job_id in order:
            conclusion = effective.get(job_id, Conclusion.SKIPPED)
            if conclusion not in (Conclusion.SUCCESS, Conclusion.SKIPPED):
                return conclusion
        return Conclusion.SUCCESS

    async def enter(ctx: RunContext) -> None:
        bind_context(workflow=workflow.name)
        run = ctx.set_workflow(workflow, config.github.run_id)
        for job_id in plan.unselected:
            run.jobs[job_id] = JobResult(job_id=job_id, result=Conclusion.SKIPPED)
            logger.info("job_skipped", job=job_id, reason="not selected")

    async def leave(ctx: RunContext, result: TaskResult) -> None:
        conclusion = result.conclusion or Conclusion.FAILURE
        logger.info(
            "workflow_completed",
            workflow=workflow.name,
            conclusion=conclusion.value,
            duration_ms=result.duration_ms,
        )
        ctx.unset_workflow(conclusion)

    plan.runner = TaskRunner(
        f"Workflow: {workflow.name or 'workflow'}",
        run_jobs,
        pre_fn=enter,
        post_fn=leave,
    )
    return plan


async def run_workflow(
    workflow: Workflow,
    config: RunnerConfig,
    job_ids: Iterable[str] | None = None,
    *,
    executor: Executor | None = None,
    actions: ActionLoader | None = None,
) -> WorkflowRun:
    """Plan and run ``workflow``, returning the workflow run record.

    Raises:
        PlanError: If the job graph is invalid.
        JobNotFoundError: If a requested job does not exist.
        TaskError: If the workflow task itself fails.
    """
    plan = plan_workflow(
        workflow, config, job_ids, executor=executor, actions=actions
    )
    assert plan.runner is not None
    ctx = RunContext(config)
    await plan.runner.run(ctx)
    assert ctx.workflow_run is not None
    return ctx.workflow_run


async def _run_job(
    job: Job,
    runs: list[JobRunPlan],
    ctx: RunContext,
    limiter: anyio.Semaphore | None,
) -> Conclusion:
    """Run every planned run of a job and record the job's result.

    Returns:
        The job conclusion as the workflow sees it: failures of runs with
        ``continue-on-error`` count as success.
    """
    assert ctx.workflow_run is not None
    if not runs:
        # A matrix that expands to nothing leaves nothing to run
        logger.info("job_skipped", job=job.id, reason="empty matrix")
        ctx.workflow_run.jobs[job.id] = JobResult(job_id=job.id)
        return Conclusion.SKIPPED

    fail_fast = True
    max_parallel = len(runs)
    if job.strategy is not None and matrix_combinations(job) is not None:
        fail_fast = job.strategy.fail_fast.resolve(ctx)
        if job.strategy.max_parallel is not None:
            max_parallel = max(1, job.strategy.max_parallel.resolve(ctx))
    semaphore = anyio.Semaphore(max_parallel)

    records: list[JobRun | None] = [None] * len(runs)
    tolerated: list[bool] = [False] * len(runs)

    async def run_matrix(index: int, run: JobRunPlan) -> None:
        async with semaphore:
            if limiter is not None:
                async with limiter:
                    await run_one(index, run)
            else:
                await run_one(index, run)

    async def run_one(index: int, run: JobRunPlan) -> None:
        if run.cancel.is_set():
            logger.info("job_run_cancelled", job=job.id, run=run.run_id)
            records[index] = JobRun(
                run_id=run.run_id,
                job_id=job.id,
                name=run.name,
                matrix=run.matrix,
                status=Conclusion.CANCELLED,
                conclusion=Conclusion.CANCELLED,
            )
            return

        job_ctx = ctx.for_job()
        try:
            await run.runner.run(job_ctx)
        except TaskError as e:
            logger.error("job_failed", job=job.id, run=run.run_id, error=str(e))

        record = job_ctx.job_run
        if record is None:
            record = JobRun(
                run_id=run.run_id, job_id=job.id, name=run.name, matrix=run.matrix
            )
        if record.conclusion is None:
            record.status = Conclusion.FAILURE
            record.conclusion = Conclusion.FAILURE
        records[index] = record

        if record.conclusion is Conclusion.FAILURE:
            tolerated[index] = _continue_on_error(job, job_ctx)
            if fail_fast and not tolerated[index]:
                for sibling in runs:
                    if sibling is not run:
                        sibling.cancel.set()

    async with anyio.create_task_group() as tg:
        for index, run in enumerate(runs):
            tg.start_soon(run_matrix, index, run)

    result = JobResult(job_id=job.id)
    conclusions: list[Conclusion] = []
    effective: list[Conclusion] = []
    for record, ignore_failure in zip(records, tolerated):
        assert record is not None
        result.runs.append(record)
        result.outputs.update(record.outputs)
        conclusion = record.conclusion or Conclusion.FAILURE
        conclusions.append(conclusion)
        effective.append(Conclusion.SUCCESS if ignore_failure else conclusion)

    result.result = _aggregate(conclusions)
    ctx.workflow_run.jobs[job.id] = result
    logger.info(
        "job_result",
        job=job.id,
        result=result.result.value,
        runs=len(result.runs),
    )
    return _aggregate(effective)


def _aggregate(conclusions: list[Conclusion]) -> Conclusion:
    """First failed or cancelled run wins; all skipped means skipped."""
    for conclusion in conclusions:
        if conclusion in (Conclusion.FAILURE, Conclusion.CANCELLED):
            return conclusion
    if conclusions and all(c is Conclusion.SKIPPED for c in conclusions):
        return Conclusion.SKIPPED
    return Conclusion.SUCCESS


def _continue_on_error(job: Job, ctx: RunContext) -> bool:
    try:
        return job.continue_on_error.resolve(ctx)
    except GharunError as e:
        logger.warning("continue_on_error_invalid", job=job.id, error=str(e))
        return False
