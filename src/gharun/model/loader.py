"""Loading workflow documents from YAML."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from gharun.exceptions import WorkflowParseError
from gharun.logging import get_logger
from gharun.model.workflow import Workflow

__all__ = ["parse_workflow", "load_workflow", "load_workflows"]

logger = get_logger(__name__)

_WORKFLOW_SUFFIXES = (".yml", ".yaml")


def _describe(error: ValidationError) -> str:
    first_error = error.errors()[0]
    location = ".".join(str(loc) for loc in first_error["loc"])
    message = first_error["msg"]
    if len(error.errors()) > 1:
        message = f"{message} (and {len(error.errors()) - 1} more errors)"
    return f"{location}: {message}" if location else message


def parse_workflow(text: str, path: Path | None = None) -> Workflow:
    """Parse a workflow document.

    Expressions in the document are parsed here, so malformed ``${{ }}``
    syntax fails the load rather than the run.

    Args:
        text: YAML source.
        path: Where the text came from, for error messages.

    Returns:
        The workflow. Its name falls back to the file stem.

    Raises:
        WorkflowParseError: If the YAML or the document is invalid.
    """
    try:
        data: Any = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise WorkflowParseError(f"invalid YAML: {e}", path=path) from e

    if not isinstance(data, dict):
        raise WorkflowParseError("a workflow must be a mapping", path=path)

    try:
        workflow = Workflow.model_validate(data)
    except ValidationError as e:
        raise WorkflowParseError(_describe(e), path=path) from e

    if not workflow.name and path is not None:
        workflow.name = path.stem
    return workflow


def load_workflow(path: Path) -> Workflow:
    """Load a single workflow file.

    Raises:
        WorkflowParseError: If the file cannot be read or parsed.
    """
    try:
        text = path.read_text()
    except OSError as e:
        raise WorkflowParseError(f"cannot read workflow: {e}", path=path) from e
    return parse_workflow(text, path=path)


def load_workflows(directory: Path) -> dict[str, Workflow]:
    """Load every ``*.yml``/``*.yaml`` workflow in a directory, keyed by name.

    Raises:
        WorkflowParseError: If any file is invalid, or two workflows share a
            name.
    """
    workflows: dict[str, Workflow] = {}
    for path in sorted(directory.iterdir()):
        if path.suffix not in _WORKFLOW_SUFFIXES or not path.is_file():
            continue
        workflow = load_workflow(path)
        if workflow.name in workflows:
            raise WorkflowParseError(
                f"duplicate workflow name '{workflow.name}'", path=path
            )
        workflows[workflow.name] = workflow
        logger.debug("workflow_loaded", name=workflow.name, path=str(path))
    return workflows
