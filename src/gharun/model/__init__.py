"""Workflow and action documents, matrix expansion and run records."""

from __future__ import annotations

from gharun.model.action import Action, ActionLoader, ActionMeta, ActionRuns
from gharun.model.enums import ActionRunsUsing, Conclusion, Status, StepStage, StepType
from gharun.model.loader import load_workflow, load_workflows, parse_workflow
from gharun.model.matrix import Combination, Matrix, format_combination
from gharun.model.runs import JobResult, JobRun, StepContext, StepRun, WorkflowRun
from gharun.model.workflow import Defaults, Job, RunDefaults, Step, Strategy, Workflow

__all__ = [
    # Documents
    "Defaults",
    "Job",
    "RunDefaults",
    "Step",
    "Strategy",
    "Workflow",
    "load_workflow",
    "load_workflows",
    "parse_workflow",
    # Actions
    "Action",
    "ActionLoader",
    "ActionMeta",
    "ActionRuns",
    "ActionRunsUsing",
    # Matrix
    "Combination",
    "Matrix",
    "format_combination",
    # Runs
    "Conclusion",
    "JobResult",
    "JobRun",
    "Status",
    "StepContext",
    "StepRun",
    "StepStage",
    "StepType",
    "WorkflowRun",
]
