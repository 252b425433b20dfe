from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Generator, Iterator
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def configure_test_logging() -> Generator[None, None, None]:
    """Log to stderr at WARNING and drop bound job context after each test."""
    from gharun.logging import clear_context, configure_logging

    configure_logging(level=logging.WARNING)
    yield
    clear_context()


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """A scratch directory; the working directory is restored afterwards."""
    original_cwd = os.getcwd()
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
    os.chdir(original_cwd)


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Hide GHARUN_* variables so settings come only from the test."""
    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("GHARUN_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture
def sample_config_yaml() -> str:
    """Project configuration as written to .gharun.yaml."""
    return """
github:
  repository: "octo-org/octo-repo"
  ref: "refs/heads/release"
  actor: "octocat"

runner:
  name: "local-runner"
  debug: true

max_parallel: 2

vars:
  REGION: "eu-west-1"

"""
