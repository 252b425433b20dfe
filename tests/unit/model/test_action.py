"""Tests for action metadata and uses resolution."""

from __future__ import annotations

from pathlib import Path

import pytest

from gharun.exceptions import ActionError
from gharun.model.action import ActionLoader, parse_uses
from gharun.model.enums import ActionRunsUsing

NODE_ACTION = """
name: Greeter
inputs:
  who:
    description: Who to greet
    default: world
  verbose:
    default: false
  count:
    required: true
outputs:
  greeting:
    description: The greeting
runs:
  using: Node20
  main: dist/index.js
  post: dist/cleanup.js
  post-if: success()
"""

DOCKER_ACTION = """
runs:
  using: docker
  image: Dockerfile
  pre-entrypoint: /pre.sh
  post-entrypoint: /post.sh
  args: ["--flag"]
"""


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    (root / ".github" / "actions" / "greet").mkdir(parents=True)
    (root / ".github" / "actions" / "greet" / "action.yml").write_text(NODE_ACTION)
    return root


@pytest.fixture
def actions_dir(tmp_path: Path) -> Path:
    root = tmp_path / "actions"
    action = root / "octo-org" / "container@v2" / "sub"
    action.mkdir(parents=True)
    (action / "action.yaml").write_text(DOCKER_ACTION)
    return root


@pytest.fixture
def loader(workspace: Path, actions_dir: Path) -> ActionLoader:
    return ActionLoader(workspace, actions_dir)


class TestParseUses:
    """Tests for parse_uses."""

    @pytest.mark.parametrize(
        ("uses", "expected"),
        [
            ("actions/checkout@v4", ("actions", "checkout", "", "v4")),
            ("octo-org/container/sub@v2", ("octo-org", "container", "sub", "v2")),
            ("a/b/c/d@main", ("a", "b", "c/d", "main")),
        ],
    )
    def test_valid_references(self, uses: str, expected: tuple[str, ...]) -> None:
        assert parse_uses(uses) == expected

    @pytest.mark.parametrize("uses", ["checkout", "actions/checkout", "@v1"])
    def test_invalid_references(self, uses: str) -> None:
        with pytest.raises(ActionError, match="Invalid action reference") as exc_info:
            parse_uses(uses)

        assert exc_info.value.uses == uses


class TestActionLoader:
    """Tests for ActionLoader."""

    def test_local_action(self, loader: ActionLoader, workspace: Path) -> None:
        action = loader.load("./.github/actions/greet")

        assert action.path == (workspace / ".github" / "actions" / "greet").resolve()
        assert action.meta.name == "Greeter"
        assert action.meta.runs.using is ActionRunsUsing.NODE20
        assert action.meta.runs.post_script == "dist/cleanup.js"
        assert action.meta.runs.post_if == "success()"
        assert action.meta.runs.pre_script is None

    def test_input_defaults_are_strings(self, loader: ActionLoader) -> None:
        meta = loader.load("./.github/actions/greet").meta

        assert meta.input_defaults() == {"who": "world", "verbose": "false"}
        assert meta.inputs["count"].required is True

    def test_remote_action_with_path(self, loader: ActionLoader) -> None:
        action = loader.load("octo-org/container/sub@v2")

        assert action.meta.runs.using is ActionRunsUsing.DOCKER
        assert action.meta.runs.pre_script == "/pre.sh"
        assert action.meta.runs.post_script == "/post.sh"
        assert action.meta.runs.args == ["--flag"]

    def test_loads_are_cached(self, loader: ActionLoader) -> None:
        first = loader.load("./.github/actions/greet")

        assert loader.load("./.github/actions/greet") is first

    def test_missing_action(self, loader: ActionLoader) -> None:
        with pytest.raises(ActionError, match="not found"):
            loader.load("actions/checkout@v4")

    def test_invalid_runs_using(self, loader: ActionLoader, workspace: Path) -> None:
        directory = workspace / "bad"
        directory.mkdir()
        (directory / "action.yml").write_text("runs:\n  using: python3\n")

        with pytest.raises(ActionError, match="runs.using"):
            loader.load("./bad")

    def test_invalid_yaml(self, loader: ActionLoader, workspace: Path) -> None:
        directory = workspace / "broken"
        directory.mkdir()
        (directory / "action.yml").write_text("runs: [")

        with pytest.raises(ActionError, match="Invalid YAML"):
            loader.load("./broken")
