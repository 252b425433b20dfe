"""Workflow commands: the stdout protocol steps use to talk to the runner.

Two line formats are recognised:

- ``::name key=value,key=value::message``
- ``##[name key=value;key=value]message``

Everything else is step log output. Commands are applied to a
:class:`~gharun.context.RunContext` after the command exits, by scanning its
captured stdout.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gharun.exceptions import WorkflowCommandError
from gharun.logging import get_logger

if TYPE_CHECKING:
    from gharun.context import RunContext

__all__ = [
    "WorkflowCommand",
    "CommandProcessor",
    "parse_command",
]

logger = get_logger(__name__)

_COLON_COMMAND = re.compile(
    r"^::([\w-]+)(?:\s+((?:[\w-]+=[^,]+,)*[\w-]+=[^,]+))??::(.*?)$"
)
_HASH_COMMAND = re.compile(r"##\[(\S+?)(\s[^\]]*)?\](.*)?$")

# Parameters annotating debug/warning/error/notice messages
_ANNOTATION_PARAMETERS = ("file", "line", "col", "endLine", "endCol", "title")

_ANNOTATION_LEVELS = {"error": "error", "warning": "warning", "notice": "info"}


@dataclass(frozen=True, slots=True)
class WorkflowCommand:
    """A parsed workflow command line.

    Attributes:
        name: Command name, e.g. ``set-output``.
        parameters: ``key=value`` parameters of the command.
        value: Text after the command, the message or the value to set.
    """

    name: str
    parameters: dict[str, str] = field(default_factory=dict)
    value: str = ""


def _parse_parameters(text: str | None, separator: str) -> dict[str, str]:
    parameters: dict[str, str] = {}
    if not text:
        return parameters
    for parameter in text.split(separator):
        key, sep, value = parameter.strip().partition("=")
        if sep:
            parameters[key] = value
    return parameters


def parse_command(line: str) -> WorkflowCommand | None:
    """Parse a stdout line as a workflow command.

    Returns:
        The command, or None if the line is ordinary log output.
    """
    line = line.rstrip("\r")
    match = _COLON_COMMAND.match(line)
    if match is not None:
        return WorkflowCommand(
            name=match.group(1),
            parameters=_parse_parameters(match.group(2), ","),
            value=match.group(3),
        )
    match = _HASH_COMMAND.search(line)
    if match is not None:
        return WorkflowCommand(
            name=match.group(1),
            parameters=_parse_parameters(match.group(2), ";"),
            value=match.group(3) or "",
        )
    return None


class CommandProcessor:
    """Apply workflow commands found in step output."""

    def __init__(self) -> None:
        self._groups: list[str] = []

    def process_output(self, ctx: RunContext, output: str) -> None:
        """Process every line of captured stdout.

        A command that cannot be applied is logged and the scan continues.
        """
        for line in output.splitlines():
            try:
                self.process_line(ctx, line)
            except WorkflowCommandError as e:
                logger.error(
                    "workflow_command_failed", command=e.command, error=e.message
                )
        self._groups.clear()

    def process_line(self, ctx: RunContext, line: str) -> None:
        """Process a single stdout line.

        Raises:
            WorkflowCommandError: If a command is missing a required parameter.
        """
        command = parse_command(line)
        if command is None:
            logger.info("step_output", line=line, group=self._current_group)
            return
        self._apply(ctx, command)

    @property
    def _current_group(self) -> str | None:
        return self._groups[-1] if self._groups else None

    def _apply(self, ctx: RunContext, command: WorkflowCommand) -> None:
        name = command.name
        if name == "group":
            self._groups.append(command.value)
            logger.info("group_started", group=command.value)
        elif name == "endgroup":
            if self._groups:
                self._groups.pop()
        elif name == "debug":
            logger.debug("step_debug", message=command.value, group=self._current_group)
        elif name in _ANNOTATION_LEVELS:
            annotation = {
                key: command.parameters[key]
                for key in _ANNOTATION_PARAMETERS
                if key in command.parameters
            }
            log = getattr(logger, _ANNOTATION_LEVELS[name])
            log(f"step_{name}", message=command.value, **annotation)
        elif name == "set-env":
            ctx.set_env(self._require_name(command), command.value)
        elif name == "set-output":
            ctx.set_step_output(self._require_name(command), command.value)
        elif name == "save-state":
            ctx.set_step_state(self._require_name(command), command.value)
        elif name == "add-mask":
            ctx.add_mask(command.value)
            logger.debug("mask_added")
        elif name == "add-matcher":
            logger.info("matcher_added", matcher=command.value)
        elif name == "add-path":
            ctx.add_path(command.value)
        else:
            # Unknown commands are echoed, as the hosted runner does
            logger.info("step_output", line=f"::{name}::{command.value}")

    @staticmethod
    def _require_name(command: WorkflowCommand) -> str:
        name = command.parameters.get("name")
        if not name:
            raise WorkflowCommandError(
                f"'{command.name}' requires a 'name' parameter", command=command.name
            )
        return name
