"""Tests for RunContext."""

from __future__ import annotations

import json
import math
import os
from pathlib import Path

import pytest

from gharun.config import RunnerConfig
from gharun.context import RunContext
from gharun.expressions import ExpressionEvaluationError, parse_expression
from gharun.logging import mask_text
from gharun.model.enums import Conclusion, Status, StepStage
from gharun.model.loader import parse_workflow
from gharun.model.workflow import Workflow

WORKFLOW = """
name: CI
env:
  LEVEL: workflow
  SHARED: from-workflow
jobs:
  build:
    name: Build ${{ matrix.os }}
    env:
      LEVEL: job
      DERIVED: ${{ env.SHARED }}-job
    steps:
      - id: greet
        run: echo hi
        env:
          LEVEL: step
      - run: echo second
"""


@pytest.fixture
def workflow() -> Workflow:
    return parse_workflow(WORKFLOW)


@pytest.fixture
def config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(
        workspace=tmp_path,
        run_dir=Path("runs"),
        secrets={"API_KEY": "key-123"},
        vars={"REGION": "eu-west-1"},
        github={"repository": "octo-org/octo-repo", "ref": "refs/heads/main"},
    )


@pytest.fixture
def ctx(config: RunnerConfig, workflow: Workflow) -> RunContext:
    root = RunContext(config)
    root.set_workflow(workflow, run_id="42")
    job_ctx = root.for_job()
    job_ctx.set_job(workflow.jobs["build"], run_id="build", matrix={"os": "linux"})
    return job_ctx


def _eval(ctx: RunContext, text: str) -> object:
    return parse_expression(text).evaluate(ctx)


class TestVariables:
    """Tests for resolving expression contexts."""

    def test_github_context(self, ctx: RunContext, config: RunnerConfig) -> None:
        assert _eval(ctx, "github.repository") == "octo-org/octo-repo"
        assert _eval(ctx, "github.repository_owner") == "octo-org"
        assert _eval(ctx, "github.ref_name") == "main"
        assert _eval(ctx, "github.job") == "build"
        assert _eval(ctx, "github.workflow") == "CI"
        assert _eval(ctx, "github.workspace") == str(config.workspace)

    def test_vars_secrets_and_matrix(self, ctx: RunContext) -> None:
        assert _eval(ctx, "vars.REGION") == "eu-west-1"
        assert _eval(ctx, "secrets.API_KEY") == "key-123"
        assert _eval(ctx, "matrix.os") == "linux"
        assert _eval(ctx, "job.status") == "success"

    def test_constants(self, ctx: RunContext) -> None:
        assert _eval(ctx, "Infinity") == math.inf
        assert math.isnan(_eval(ctx, "NaN"))  # type: ignore[arg-type]

    def test_unknown_variable(self, ctx: RunContext) -> None:
        with pytest.raises(ExpressionEvaluationError) as exc_info:
            _eval(ctx, "bogus.value")

        assert "github" in exc_info.value.context_vars

    def test_secrets_are_masked(self, ctx: RunContext) -> None:
        assert mask_text("token key-123") == "token ***"

    def test_job_name_is_resolved(self, ctx: RunContext) -> None:
        assert ctx.job_run is not None
        assert ctx.job_run.name == "Build linux"

    def test_explicit_job_name_wins(
        self, config: RunnerConfig, workflow: Workflow
    ) -> None:
        ctx = RunContext(config, workflow=workflow)

        job_run = ctx.set_job(workflow.jobs["build"], run_id="b-1", name="custom")

        assert job_run.name == "custom"


class TestEnvironment:
    """Tests for env layering and the step environment."""

    def test_env_layers(self, ctx: RunContext, workflow: Workflow) -> None:
        assert ctx.env["LEVEL"] == "job"
        assert ctx.env["DERIVED"] == "from-workflow-job"

        ctx.set_step(workflow.jobs["build"].steps[0], "greet", StepStage.MAIN)

        assert ctx.env["LEVEL"] == "step"

    def test_set_env_overrides_step_value(
        self, ctx: RunContext, workflow: Workflow
    ) -> None:
        ctx.set_step(workflow.jobs["build"].steps[0], "greet", StepStage.MAIN)
        ctx.set_env("LEVEL", "exported")
        ctx.unset_step(Conclusion.SUCCESS)

        assert ctx.env["LEVEL"] == "exported"

    def test_step_environment(self, ctx: RunContext, workflow: Workflow) -> None:
        ctx.set_step(workflow.jobs["build"].steps[0], "greet", StepStage.MAIN)
        ctx.set_action_inputs({"who": "world", "dry run": "true"})
        ctx.set_step_state("pid", "123")
        ctx.add_path("/opt/tool/bin")

        environment = ctx.step_environment()

        assert environment["CI"] == "true"
        assert environment["GITHUB_REPOSITORY"] == "octo-org/octo-repo"
        assert environment["GITHUB_ACTION"] == "greet"
        assert environment["INPUT_WHO"] == "world"
        assert environment["INPUT_DRY_RUN"] == "true"
        assert environment["STATE_pid"] == "123"
        assert environment["LEVEL"] == "step"
        assert environment["PATH"].split(os.pathsep)[0] == "/opt/tool/bin"
        assert _eval(ctx, "inputs.who") == "world"

    def test_add_path_prepends_once(self, ctx: RunContext) -> None:
        ctx.add_path("/a")
        ctx.add_path("/b")
        ctx.add_path("/a")

        assert ctx.paths == ["/b", "/a"]


class TestStepLifecycle:
    """Tests for set_step and unset_step."""

    def test_step_results_feed_steps_context(
        self, ctx: RunContext, workflow: Workflow
    ) -> None:
        ctx.set_step(workflow.jobs["build"].steps[0], "greet", StepStage.MAIN)
        ctx.set_step_output("greeting", "hello")
        ctx.set_step_results(Conclusion.SUCCESS, Conclusion.FAILURE)
        ctx.unset_step(None)

        assert _eval(ctx, "steps.greet.outputs.greeting") == "hello"
        assert _eval(ctx, "steps.greet.conclusion") == "success"
        assert _eval(ctx, "steps.greet.outcome") == "failure"
        assert ctx.job_run is not None
        assert ctx.job_run.steps[0].status is Status.COMPLETED

    def test_skipped_step_is_recorded(
        self, ctx: RunContext, workflow: Workflow
    ) -> None:
        ctx.set_step(workflow.jobs["build"].steps[1], "second", StepStage.MAIN)
        ctx.unset_step(Conclusion.SKIPPED)

        assert ctx.steps["1"].conclusion is Conclusion.SKIPPED
        assert ctx.job_run is not None
        assert ctx.job_run.steps[0].conclusion is Conclusion.SKIPPED

    def test_dropped_phase_leaves_no_record(
        self, ctx: RunContext, workflow: Workflow
    ) -> None:
        step = workflow.jobs["build"].steps[0]
        ctx.set_step(step, "greet", StepStage.MAIN)
        ctx.unset_step(Conclusion.SUCCESS)
        ctx.set_step(step, "Post greet", StepStage.POST)
        ctx.unset_step(None)

        assert ctx.job_run is not None
        assert [s.stage for s in ctx.job_run.steps] == ["main"]

    def test_post_phase_does_not_touch_steps_context(
        self, ctx: RunContext, workflow: Workflow
    ) -> None:
        step = workflow.jobs["build"].steps[0]
        ctx.set_step(step, "greet", StepStage.MAIN)
        ctx.unset_step(Conclusion.SUCCESS)
        ctx.set_step(step, "Post greet", StepStage.POST)
        ctx.unset_step(Conclusion.FAILURE)

        assert ctx.steps["greet"].conclusion is Conclusion.SUCCESS

    def test_step_state_is_private_to_step(
        self, ctx: RunContext, workflow: Workflow
    ) -> None:
        first, second = workflow.jobs["build"].steps
        ctx.set_step(first, "greet", StepStage.MAIN)
        ctx.set_step_state("token", "abc")
        ctx.unset_step(Conclusion.SUCCESS)
        ctx.set_step(second, "second", StepStage.MAIN)

        assert ctx.step_state() == {}


class TestExport:
    """Tests for run record export."""

    def test_records_are_written(
        self, ctx: RunContext, config: RunnerConfig, workflow: Workflow
    ) -> None:
        ctx.set_step(workflow.jobs["build"].steps[0], "greet", StepStage.MAIN)
        ctx.unset_step(Conclusion.SUCCESS)
        ctx.set_job_results(Conclusion.SUCCESS, {"out": "1"})
        ctx.unset_job()

        run_dir = config.workspace / "runs" / "42" / "jobs" / "build"
        job_run = json.loads((run_dir / "job_run.json").read_text())
        assert job_run["conclusion"] == "success"
        assert job_run["outputs"] == {"out": "1"}
        assert (run_dir / "steps" / "01_greet_main.json").is_file()

    def test_disabled_run_dir(self, tmp_path: Path, workflow: Workflow) -> None:
        ctx = RunContext(RunnerConfig(workspace=tmp_path, run_dir=None))
        ctx.set_workflow(workflow, run_id="1")

        ctx.unset_workflow(Conclusion.SUCCESS)

        assert not (tmp_path / "1").exists()
        assert ctx.workflow_run is not None
        assert ctx.workflow_run.conclusion is Conclusion.SUCCESS
