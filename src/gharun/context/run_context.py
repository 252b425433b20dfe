"""Run context: the variable provider expressions see and the run state.

A :class:`RunContext` belongs to exactly one job run. Workflow-level values
(configuration, workflow env, results of finished jobs) are shared between
the contexts of a workflow; job, step and matrix state is private to each,
so concurrently running jobs never write the same record.
"""

from __future__ import annotations

import math
import os
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from gharun.config import RunnerConfig
from gharun.expressions import ExprString, ExpressionEvaluationError
from gharun.logging import get_logger, register_mask
from gharun.model.enums import Conclusion, Status, StepStage
from gharun.model.runs import JobResult, JobRun, StepContext, StepRun, WorkflowRun
from gharun.model.workflow import Job, Step, Workflow

__all__ = ["RunContext"]

logger = get_logger(__name__)

# Root names a RunContext resolves, besides the numeric constants
_CONTEXT_NAMES = (
    "github",
    "runner",
    "env",
    "vars",
    "job",
    "jobs",
    "steps",
    "secrets",
    "strategy",
    "matrix",
    "needs",
    "inputs",
)


def _now() -> datetime:
    return datetime.now(UTC)


class RunContext:
    """Variable provider and mutable state for one job run.

    Lifecycle hooks are called by the planners in pairs:
    ``set_workflow``/``unset_workflow``, ``set_job``/``unset_job`` and
    ``set_step``/``unset_step``. Workflow commands emitted by steps land in
    ``set_step_output``, ``set_step_state``, ``set_env``, ``add_path`` and
    ``add_mask``.

    Attributes:
        config: Runner configuration.
        workflow: Workflow being run, once set.
        workflow_run: Shared record of the workflow run, once set.
        job_run: Record of this context's job run, once set.
    """

    def __init__(
        self,
        config: RunnerConfig,
        *,
        workflow: Workflow | None = None,
        workflow_run: WorkflowRun | None = None,
        workflow_env: dict[str, str] | None = None,
    ) -> None:
        self.config = config
        self.workflow = workflow
        self.workflow_run = workflow_run
        self._workflow_env: dict[str, str] = dict(workflow_env or {})

        # Job scope
        self.job: Job | None = None
        self.job_run: JobRun | None = None
        self._job_env: dict[str, str] = {}
        self._exported_env: dict[str, str] = {}
        self._paths: list[str] = []
        self._matrix: dict[str, Any] = {}
        self._strategy: dict[str, Any] = {}
        self._needs: dict[str, JobResult] = {}
        self._steps: dict[str, StepContext] = {}

        # Step scope
        self.step: Step | None = None
        self.step_run: StepRun | None = None
        self._step_env: dict[str, str] = {}
        self._action_inputs: dict[str, str] | None = None
        self._github_extra: dict[str, Any] = {}

        for secret in config.secrets.values():
            register_mask(secret)
        if config.github.token:
            register_mask(config.github.token)

    # ------------------------------------------------------------------
    # VariableProvider
    # ------------------------------------------------------------------

    @property
    def workspace(self) -> Path:
        return self.config.workspace

    def get_variable(self, name: str) -> Any:
        """Resolve a root context name.

        Raises:
            ExpressionEvaluationError: If ``name`` is not a known context.
        """
        key = name.lower()
        if key == "github":
            return self.github_context()
        if key == "runner":
            return self.runner_context()
        if key == "env":
            return self.env
        if key == "vars":
            return dict(self.config.vars)
        if key == "secrets":
            return self.secrets_context()
        if key == "job":
            return self.job_context()
        if key == "jobs":
            return {}
        if key == "steps":
            return self._steps
        if key == "strategy":
            return dict(self._strategy)
        if key == "matrix":
            return dict(self._matrix)
        if key == "needs":
            return dict(self._needs)
        if key == "inputs":
            return dict(self._action_inputs or {})
        if key == "infinity":
            return math.inf
        if key == "nan":
            return math.nan
        raise ExpressionEvaluationError(
            f"Unknown variable '{name}'", context_vars=_CONTEXT_NAMES
        )

    def github_context(self) -> dict[str, Any]:
        github = self.config.github
        context: dict[str, Any] = {
            "action": self.step.id if self.step is not None else "",
            "actor": github.actor,
            "api_url": github.api_url,
            "event": {},
            "event_name": github.event_name,
            "job": self.job.id if self.job is not None else "",
            "ref": github.ref,
            "ref_name": github.ref.rsplit("/", 1)[-1],
            "repository": github.repository,
            "repository_owner": github.repository.split("/", 1)[0],
            "run_attempt": github.run_attempt,
            "run_id": github.run_id,
            "run_number": github.run_number,
            "server_url": github.server_url,
            "sha": github.sha,
            "token": github.token or "",
            "workflow": self.workflow.name if self.workflow is not None else "",
            "workspace": str(self.workspace),
        }
        context.update(self._github_extra)
        return context

    def runner_context(self) -> dict[str, Any]:
        runner = self.config.runner
        return {
            "name": runner.name,
            "os": runner.os,
            "arch": runner.arch,
            "temp": str(self.config.scratch_dir),
            "tool_cache": str(
                runner.tool_cache or self.config.scratch_dir / "tool_cache"
            ),
            "debug": "1" if runner.debug else "",
        }

    def secrets_context(self) -> dict[str, str]:
        secrets = dict(self.config.secrets)
        if self.config.github.token:
            secrets.setdefault("GITHUB_TOKEN", self.config.github.token)
        return secrets

    def job_context(self) -> dict[str, Any]:
        status = self.job_run.status if self.job_run is not None else Conclusion.SUCCESS
        return {"status": status.value}

    @property
    def env(self) -> dict[str, str]:
        """The ``env`` context: workflow, job, exported, then step values."""
        return {
            **self._workflow_env,
            **self._job_env,
            **self._exported_env,
            **self._step_env,
        }

    def set_github_value(self, key: str, value: Any) -> None:
        """Expose an extra ``github.<key>`` value (env file paths, event)."""
        self._github_extra[key] = value

    def unset_github_value(self, key: str) -> None:
        self._github_extra.pop(key, None)

    # ------------------------------------------------------------------
    # Workflow scope
    # ------------------------------------------------------------------

    def set_workflow(self, workflow: Workflow, run_id: str) -> WorkflowRun:
        """Start a workflow run and resolve the workflow-level ``env``."""
        self.workflow = workflow
        self.workflow_run = WorkflowRun(
            run_id=run_id, name=workflow.name, started_at=_now()
        )
        self._workflow_env = self._resolve_env(workflow.env)
        return self.workflow_run

    def unset_workflow(self, conclusion: Conclusion) -> None:
        if self.workflow_run is None:
            return
        self.workflow_run.conclusion = conclusion
        self.workflow_run.completed_at = _now()
        self.export("workflow_run.json", self.workflow_run)

    def for_job(self) -> RunContext:
        """A fresh context for one job run sharing this workflow's state."""
        return RunContext(
            self.config,
            workflow=self.workflow,
            workflow_run=self.workflow_run,
            workflow_env=self._workflow_env,
        )

    # ------------------------------------------------------------------
    # Job scope
    # ------------------------------------------------------------------

    def set_job(
        self,
        job: Job,
        *,
        run_id: str,
        name: str | None = None,
        matrix: Mapping[str, Any] | None = None,
        strategy: Mapping[str, Any] | None = None,
        status: Conclusion = Conclusion.SUCCESS,
    ) -> JobRun:
        """Start a job run.

        ``needs`` exposes the results of the job's dependencies recorded so
        far in the workflow run; ``status`` seeds ``job.status``, which a
        job-level ``if`` sees before the job's own tasks start. ``name``
        overrides the display name, e.g. to add matrix values.
        """
        self.job = job
        self._matrix = dict(matrix or {})
        self._strategy = dict(strategy or {})
        self._needs = {}
        if self.workflow_run is not None:
            for need in job.needs:
                result = self.workflow_run.jobs.get(need)
                if result is not None:
                    self._needs[need] = result
        self._steps = {}
        self._exported_env = {}
        self._paths = []
        self.job_run = JobRun(
            run_id=run_id,
            job_id=job.id,
            name=job.display_name,
            matrix=self._matrix,
            status=status,
            started_at=_now(),
        )
        self._job_env = self._resolve_env(job.env)
        if name is not None:
            self.job_run.name = name
        elif job.name is not None:
            self.job_run.name = job.name.resolve(self)
        return self.job_run

    def unset_job(self) -> None:
        if self.job_run is None:
            return
        self.job_run.completed_at = _now()
        self.export(f"jobs/{self.job_run.run_id}/job_run.json", self.job_run)

    @property
    def job_status(self) -> Conclusion:
        return self.job_run.status if self.job_run is not None else Conclusion.SUCCESS

    def set_job_status(self, status: Conclusion) -> None:
        if self.job_run is not None:
            self.job_run.status = status

    def set_job_results(self, conclusion: Conclusion, outputs: dict[str, str]) -> None:
        if self.job_run is None:
            return
        self.job_run.conclusion = conclusion
        self.job_run.outputs = dict(outputs)

    # ------------------------------------------------------------------
    # Step scope
    # ------------------------------------------------------------------

    @property
    def steps(self) -> dict[str, StepContext]:
        return self._steps

    def step_context(self, step_id: str) -> StepContext:
        """The ``steps.<id>`` entry, created on first use."""
        if step_id not in self._steps:
            self._steps[step_id] = StepContext()
        return self._steps[step_id]

    def set_step(self, step: Step, name: str, stage: StepStage) -> StepRun:
        """Start a step phase and resolve the step-level ``env``."""
        self.step = step
        self.step_context(step.id)
        self.step_run = StepRun(
            step_id=step.id,
            name=name,
            stage=stage.value,
            status=Status.IN_PROGRESS,
            started_at=_now(),
        )
        if self.job_run is not None:
            self.job_run.steps.append(self.step_run)
        self._step_env = {}
        self._step_env = self._resolve_env(step.env)
        return self.step_run

    def unset_step(self, conclusion: Conclusion | None) -> None:
        """Finish the current step phase.

        Phases that never recorded results (skipped ones) take ``conclusion``
        as both conclusion and outcome. Phases dropped by their condition
        (no conclusion at all) leave no record.
        """
        step_run = self.step_run
        if step_run is not None and step_run.conclusion is None and conclusion is None:
            if self.job_run is not None:
                steps = self.job_run.steps
                self.job_run.steps = [s for s in steps if s is not step_run]
        elif step_run is not None and self.step is not None:
            step_run.status = Status.COMPLETED
            step_run.completed_at = _now()
            if step_run.conclusion is None:
                step_run.conclusion = conclusion
                step_run.outcome = conclusion
            if step_run.stage == StepStage.MAIN.value:
                context = self.step_context(self.step.id)
                if context.conclusion is None:
                    context.conclusion = step_run.conclusion
                    context.outcome = step_run.outcome
            if self.job_run is not None:
                index = len(self.job_run.steps)
                self.export(
                    f"jobs/{self.job_run.run_id}/steps/{index:02d}_{step_run.step_id}_"
                    f"{step_run.stage}.json",
                    step_run,
                )
        self.step = None
        self.step_run = None
        self._step_env = {}
        self._action_inputs = None

    def set_step_results(self, conclusion: Conclusion, outcome: Conclusion) -> None:
        if self.step_run is None or self.step is None:
            return
        self.step_run.conclusion = conclusion
        self.step_run.outcome = outcome
        if self.step_run.stage == StepStage.MAIN.value:
            context = self.step_context(self.step.id)
            context.conclusion = conclusion
            context.outcome = outcome

    def set_action_inputs(self, inputs: dict[str, str]) -> None:
        """Expose action inputs as the ``inputs`` context for the current step."""
        self._action_inputs = dict(inputs)

    @property
    def action_inputs(self) -> dict[str, str] | None:
        return self._action_inputs

    # ------------------------------------------------------------------
    # Workflow command effects
    # ------------------------------------------------------------------

    def set_step_output(self, key: str, value: str) -> None:
        if self.step is not None:
            self.step_context(self.step.id).outputs[key] = value

    def set_step_state(self, key: str, value: str) -> None:
        if self.step is not None:
            self.step_context(self.step.id).state[key] = value

    def step_state(self) -> dict[str, str]:
        if self.step is None:
            return {}
        return dict(self.step_context(self.step.id).state)

    def set_env(self, key: str, value: str) -> None:
        """Set an env variable for the rest of the current step and the job."""
        self._exported_env[key] = value
        self._step_env.pop(key, None)

    def add_path(self, path: str) -> None:
        """Prepend a directory to ``PATH`` for the following steps."""
        if path not in self._paths:
            self._paths.insert(0, path)

    @property
    def paths(self) -> list[str]:
        return list(self._paths)

    def add_mask(self, value: str) -> None:
        register_mask(value)

    # ------------------------------------------------------------------
    # Executor environment
    # ------------------------------------------------------------------

    def default_environment(self) -> dict[str, str]:
        """``GITHUB_*`` and ``RUNNER_*`` variables every step receives."""
        github = self.github_context()
        runner = self.runner_context()
        environment = {
            "CI": "true",
            "GITHUB_ACTIONS": "true",
            "GITHUB_ACTOR": github["actor"],
            "GITHUB_API_URL": github["api_url"],
            "GITHUB_EVENT_NAME": github["event_name"],
            "GITHUB_JOB": github["job"],
            "GITHUB_REF": github["ref"],
            "GITHUB_REF_NAME": github["ref_name"],
            "GITHUB_REPOSITORY": github["repository"],
            "GITHUB_REPOSITORY_OWNER": github["repository_owner"],
            "GITHUB_RUN_ATTEMPT": github["run_attempt"],
            "GITHUB_RUN_ID": github["run_id"],
            "GITHUB_RUN_NUMBER": github["run_number"],
            "GITHUB_SERVER_URL": github["server_url"],
            "GITHUB_SHA": github["sha"],
            "GITHUB_WORKFLOW": github["workflow"],
            "GITHUB_WORKSPACE": github["workspace"],
            "GITHUB_ACTION": github["action"],
            "RUNNER_NAME": runner["name"],
            "RUNNER_OS": runner["os"],
            "RUNNER_ARCH": runner["arch"],
            "RUNNER_TEMP": runner["temp"],
            "RUNNER_TOOL_CACHE": runner["tool_cache"],
        }
        if runner["debug"]:
            environment["RUNNER_DEBUG"] = "1"
        return environment

    def step_environment(self) -> dict[str, str]:
        """Environment for the command of the current step phase.

        Defaults, then the ``env`` context, then ``INPUT_*`` for action
        inputs and ``STATE_*`` for state saved by the step. ``PATH`` gets
        the directories added with ``add-path`` in front.
        """
        environment = self.default_environment()
        environment.update(self.env)
        for key, value in (self._action_inputs or {}).items():
            environment[f"INPUT_{key.replace(' ', '_').upper()}"] = value
        for key, value in self.step_state().items():
            environment[f"STATE_{key}"] = value
        if self._paths:
            base = environment.get("PATH", os.environ.get("PATH", ""))
            entries = [*self._paths, base] if base else self._paths
            environment["PATH"] = os.pathsep.join(entries)
        return environment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_env(self, env: Mapping[str, ExprString]) -> dict[str, str]:
        """Evaluate env values in order; later values see earlier scopes."""
        return {key: value.resolve(self) for key, value in env.items()}

    def export(self, relative_path: str, record: BaseModel) -> None:
        """Write a run record as JSON under the configured run directory."""
        if self.config.run_dir is None or self.workflow_run is None:
            return
        path = (
            self.config.resolve(self.config.run_dir)
            / self.workflow_run.run_id
            / relative_path
        )
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(record.model_dump_json(indent=2, by_alias=True))
