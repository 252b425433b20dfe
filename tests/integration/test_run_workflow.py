"""End-to-end workflow runs on the host with ``sh``."""

from __future__ import annotations

import json
import textwrap
from pathlib import Path

import pytest

from gharun.config import RunnerConfig
from gharun.model.enums import Conclusion
from gharun.model.loader import parse_workflow
from gharun.runner import run_workflow

PIPELINE = """
name: ci
defaults:
  run:
    shell: sh
env:
  GREETING: hello
jobs:
  build:
    outputs:
      artifact: ${{ steps.pkg.outputs.artifact }}
      flavor: ${{ steps.pkg.outputs.flavor }}
    steps:
      - id: pkg
        name: Package
        run: |
          echo "artifact=app-1.0.tar.gz" >> "$GITHUB_OUTPUT"
          echo "STAGE=packaged" >> "$GITHUB_ENV"
          echo "::set-output name=flavor::release"
      - run: echo "$STAGE" > stage.txt
  publish:
    needs: build
    steps:
      - run: |
          echo "${{ needs.build.outputs.artifact }} $GREETING" > published.txt
"""


@pytest.fixture
def config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(workspace=tmp_path, run_dir=tmp_path / "runs")


@pytest.mark.asyncio
async def test_pipeline(tmp_path: Path, config: RunnerConfig) -> None:
    run = await run_workflow(parse_workflow(PIPELINE), config)

    assert run.conclusion is Conclusion.SUCCESS
    assert run.jobs["build"].outputs == {
        "artifact": "app-1.0.tar.gz",
        "flavor": "release",
    }
    assert (tmp_path / "stage.txt").read_text() == "packaged\n"
    assert (tmp_path / "published.txt").read_text() == "app-1.0.tar.gz hello\n"


@pytest.mark.asyncio
async def test_run_records_are_exported(
    tmp_path: Path, config: RunnerConfig
) -> None:
    await run_workflow(parse_workflow(PIPELINE), config)

    run_dir = tmp_path / "runs" / "1"
    workflow_run = json.loads((run_dir / "workflow_run.json").read_text())
    assert workflow_run["conclusion"] == "success"
    assert set(workflow_run["jobs"]) == {"build", "publish"}

    job_run = json.loads((run_dir / "jobs" / "build" / "job_run.json").read_text())
    assert [step["name"] for step in job_run["steps"]] == [
        "Package",
        'Run echo "$STAGE" > stage.txt',
    ]
    assert (run_dir / "jobs" / "build" / "steps" / "01_pkg_main.json").is_file()


@pytest.mark.asyncio
async def test_failing_step(tmp_path: Path, config: RunnerConfig) -> None:
    workflow = parse_workflow(
        textwrap.dedent(
            """
            defaults:
              run:
                shell: sh
            jobs:
              build:
                steps:
                  - run: exit 3
                  - run: touch never.txt
                  - if: failure()
                    run: touch cleanup.txt
            """
        )
    )

    run = await run_workflow(workflow, config)

    assert run.conclusion is Conclusion.FAILURE
    assert run.jobs["build"].result is Conclusion.FAILURE
    assert not (tmp_path / "never.txt").exists()
    assert (tmp_path / "cleanup.txt").exists()
