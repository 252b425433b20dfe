"""Task runners and the step, job and workflow planners."""

from __future__ import annotations

from gharun.runner.commands import CommandProcessor, WorkflowCommand, parse_command
from gharun.runner.envfiles import EnvironmentFiles, parse_env_file
from gharun.runner.executor import (
    CancelSignal,
    ExecutionRequest,
    ExecutionResult,
    Executor,
    LocalExecutor,
)
from gharun.runner.job import JobRunPlan, plan_job, plan_job_run, roll_up
from gharun.runner.steps import StepPlan, StepRuntime, new_step
from gharun.runner.task import TaskResult, TaskRunner
from gharun.runner.workflow import (
    WorkflowPlan,
    order_jobs,
    plan_workflow,
    run_workflow,
)

__all__ = [
    # Tasks
    "TaskResult",
    "TaskRunner",
    # Workflow commands
    "CommandProcessor",
    "EnvironmentFiles",
    "WorkflowCommand",
    "parse_command",
    "parse_env_file",
    # Executors
    "CancelSignal",
    "ExecutionRequest",
    "ExecutionResult",
    "Executor",
    "LocalExecutor",
    # Planners
    "JobRunPlan",
    "StepPlan",
    "StepRuntime",
    "WorkflowPlan",
    "new_step",
    "order_jobs",
    "plan_job",
    "plan_job_run",
    "plan_workflow",
    "roll_up",
    "run_workflow",
]
