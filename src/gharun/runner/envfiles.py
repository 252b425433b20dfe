"""Environment files (``GITHUB_ENV``, ``GITHUB_OUTPUT``, ...).

Each executed step phase gets a fresh set of empty files whose paths are
passed in the environment. After the command exits their contents are
applied to the run context, like workflow commands on stdout.

``GITHUB_ENV``, ``GITHUB_OUTPUT`` and ``GITHUB_STATE`` hold ``KEY=VALUE``
lines or multiline heredocs::

    KEY<<EOF
    line one
    line two
    EOF
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from gharun.constants import ENV_FILE_VARIABLES
from gharun.exceptions import WorkflowCommandError
from gharun.logging import get_logger

if TYPE_CHECKING:
    from gharun.context import RunContext

__all__ = ["EnvironmentFiles", "parse_env_file"]

logger = get_logger(__name__)


def parse_env_file(text: str, *, source: str = "environment file") -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines and ``KEY<<DELIMITER`` heredocs.

    Blank lines are ignored. Later assignments of a key win.

    Raises:
        WorkflowCommandError: If a line is neither form, or a heredoc is not
            closed by its delimiter.
    """
    values: dict[str, str] = {}
    lines = text.splitlines()
    index = 0
    while index < len(lines):
        line = lines[index]
        index += 1
        if not line.strip():
            continue

        equals = line.find("=")
        heredoc = line.find("<<")
        if heredoc > 0 and (equals < 0 or heredoc < equals):
            key = line[:heredoc]
            delimiter = line[heredoc + 2 :]
            if not key or not delimiter:
                raise WorkflowCommandError(f"Invalid heredoc in {source}: {line!r}")
            body: list[str] = []
            while True:
                if index >= len(lines):
                    raise WorkflowCommandError(
                        f"Heredoc '{delimiter}' for '{key}' is not closed in {source}"
                    )
                current = lines[index]
                index += 1
                if current == delimiter:
                    break
                body.append(current)
            values[key] = "\n".join(body)
        elif equals > 0:
            values[line[:equals]] = line[equals + 1 :]
        else:
            raise WorkflowCommandError(f"Invalid line in {source}: {line!r}")
    return values


class EnvironmentFiles:
    """The set of environment files for one step phase.

    Attributes:
        directory: Directory holding the files.
        paths: File path per kind (``env``, ``path``, ``output``, ``state``,
            ``step_summary``).
    """

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.paths = {kind: directory / kind for kind in ENV_FILE_VARIABLES}

    @classmethod
    def create(cls, directory: Path) -> EnvironmentFiles:
        """Create the directory and empty files, truncating existing ones."""
        files = cls(directory)
        directory.mkdir(parents=True, exist_ok=True)
        for path in files.paths.values():
            path.write_text("")
        return files

    def variables(self) -> dict[str, str]:
        """``GITHUB_ENV`` and friends, pointing at the files."""
        return {
            variable: str(self.paths[kind])
            for kind, variable in ENV_FILE_VARIABLES.items()
        }

    def _read(self, kind: str) -> str:
        path = self.paths[kind]
        return path.read_text() if path.exists() else ""

    def apply(self, ctx: RunContext) -> None:
        """Apply what the command wrote to the files.

        Raises:
            WorkflowCommandError: If a file is malformed.
        """
        env = parse_env_file(self._read("env"), source="GITHUB_ENV")
        for key, value in env.items():
            ctx.set_env(key, value)

        for line in self._read("path").splitlines():
            if line.strip():
                ctx.add_path(line.strip())

        outputs = parse_env_file(self._read("output"), source="GITHUB_OUTPUT")
        for key, value in outputs.items():
            ctx.set_step_output(key, value)

        state = parse_env_file(self._read("state"), source="GITHUB_STATE")
        for key, value in state.items():
            ctx.set_step_state(key, value)

        summary = self._read("step_summary")
        if summary.strip():
            logger.info("step_summary", summary=summary)
