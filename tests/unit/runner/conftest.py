from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from gharun.config import RunnerConfig
from gharun.context import RunContext
from gharun.model.action import ActionLoader
from gharun.model.workflow import Workflow
from tests.fixtures.executors import ScriptedExecutor


@pytest.fixture
def config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(workspace=tmp_path, run_dir=None)


@pytest.fixture
def executor() -> ScriptedExecutor:
    return ScriptedExecutor()


@pytest.fixture
def actions(tmp_path: Path) -> ActionLoader:
    return ActionLoader(tmp_path, tmp_path / "actions")


@pytest.fixture
def job_context(config: RunnerConfig) -> Callable[[Workflow], RunContext]:
    """Factory for a job-scoped context of a started workflow run."""

    def create(workflow: Workflow) -> RunContext:
        root = RunContext(config)
        root.set_workflow(workflow, run_id="1")
        return root.for_job()

    return create
