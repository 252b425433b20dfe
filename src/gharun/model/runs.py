"""Run records: the mutable state of steps, jobs and workflows being run.

These are what the ``steps``, ``job`` and ``needs`` contexts expose to
expressions, and what is exported as JSON for diagnostics. Field aliases are
the names expressions use (``steps.build.outputs``, ``needs.test.result``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from gharun.model.enums import Conclusion, Status

__all__ = [
    "StepContext",
    "StepRun",
    "JobRun",
    "JobResult",
    "WorkflowRun",
]


class _Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StepContext(_Record):
    """Entry of the ``steps`` context for one step id.

    Attributes:
        outputs: Values set with ``set-output`` or ``GITHUB_OUTPUT``.
        outcome: Result before ``continue-on-error`` is applied.
        conclusion: Result after ``continue-on-error`` is applied.
        state: Values saved with ``save-state``; visible to the step's own
            pre and post phases as ``STATE_*`` variables.
    """

    outputs: dict[str, str] = Field(default_factory=dict)
    outcome: Conclusion | None = None
    conclusion: Conclusion | None = None
    state: dict[str, str] = Field(default_factory=dict, exclude=True)


class StepRun(_Record):
    """One executed phase (pre, main or post) of a step."""

    step_id: str
    name: str
    stage: str = "main"
    status: Status = Status.QUEUED
    outcome: Conclusion | None = None
    conclusion: Conclusion | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobRun(_Record):
    """One run of a job: a single matrix combination, or the job itself.

    Attributes:
        run_id: Unique id of this run (the job id, plus the combination
            index for matrix runs).
        job_id: Id of the job in the workflow.
        name: Display name, including matrix values.
        matrix: The combination this run uses, empty without a matrix.
        status: Running status rolled up from its tasks (``job.status``).
        conclusion: Final conclusion once the run completes.
        outputs: Evaluated job outputs.
        steps: Phases executed so far.
    """

    run_id: str
    job_id: str
    name: str
    matrix: dict[str, Any] = Field(default_factory=dict)
    status: Conclusion = Conclusion.SUCCESS
    conclusion: Conclusion | None = None
    outputs: dict[str, str] = Field(default_factory=dict)
    steps: list[StepRun] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class JobResult(_Record):
    """Aggregate result of a job across its runs; the ``needs.<id>`` entry.

    Attributes:
        job_id: Id of the job.
        result: Aggregate conclusion of the job's runs.
        outputs: Outputs merged from the job's runs, in run order.
        runs: The individual runs (one per matrix combination).
    """

    job_id: str
    result: Conclusion = Conclusion.SKIPPED
    outputs: dict[str, str] = Field(default_factory=dict)
    runs: list[JobRun] = Field(default_factory=list)


class WorkflowRun(_Record):
    """A workflow run and the results of its jobs, keyed by job id."""

    run_id: str
    name: str
    conclusion: Conclusion | None = None
    jobs: dict[str, JobResult] = Field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
