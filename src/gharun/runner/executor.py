"""Executors: run a resolved step command and capture its output.

The step layer builds an :class:`ExecutionRequest` and hands it to an
:class:`Executor`; workflow commands and environment files are processed
from the returned :class:`ExecutionResult` afterwards, so executors know
nothing about the runner protocol.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, runtime_checkable

import anyio

from gharun.exceptions import ExecutorError, StepCancelledError
from gharun.logging import get_logger

__all__ = [
    "CancelSignal",
    "Executor",
    "ExecutionRequest",
    "ExecutionResult",
    "LocalExecutor",
]

logger = get_logger(__name__)

# Seconds between SIGTERM and SIGKILL when stopping a command
TERMINATION_GRACE_PERIOD: float = 2.0


class CancelSignal:
    """A cancellation flag shared by a job run and the commands it starts.

    The underlying :class:`anyio.Event` is created on first use, so a signal
    can be made while planning, outside any event loop.
    """

    def __init__(self) -> None:
        self._event: anyio.Event | None = None

    @property
    def event(self) -> anyio.Event:
        if self._event is None:
            self._event = anyio.Event()
        return self._event

    def set(self) -> None:
        self.event.set()

    def is_set(self) -> bool:
        return self._event is not None and self._event.is_set()


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """A fully resolved command to run.

    Attributes:
        args: Program and arguments (no shell expansion).
        env: Environment variables layered over the runner's own.
        cwd: Working directory; None uses the executor's default.
        image: Container image to run ``args`` in; None runs on the host.
        entrypoint: Entrypoint override for ``image``.
    """

    args: tuple[str, ...]
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Path | None = None
    image: str | None = None
    entrypoint: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Result of executing a request.

    Attributes:
        exit_code: Exit status (0 = success).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_ms: Execution time in milliseconds.
    """

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@runtime_checkable
class Executor(Protocol):
    """Capability that runs a command for a step.

    Implementations return the captured output for any exit status and only
    raise when the command could not be supervised. When ``cancel`` is set
    while the command runs, the command is stopped and
    :class:`~gharun.exceptions.StepCancelledError` is raised.
    """

    async def execute(
        self, request: ExecutionRequest, cancel: anyio.Event | None = None
    ) -> ExecutionResult: ...


class LocalExecutor:
    """Run commands as host subprocesses, or through ``docker run``.

    Args:
        workspace: Default working directory, mounted into containers at
            the same path.
        docker: Docker client binary used for image requests.
    """

    def __init__(self, workspace: Path, docker: str = "docker") -> None:
        self._workspace = workspace
        self._docker = docker

    def _command(self, request: ExecutionRequest, cwd: Path) -> list[str]:
        if request.image is None:
            return list(request.args)
        command = [
            self._docker,
            "run",
            "--rm",
            "-v",
            f"{self._workspace}:{self._workspace}",
            "-w",
            str(cwd),
        ]
        # Values travel through the client's environment, not the command line
        for key in request.env:
            command.extend(["-e", key])
        if request.entrypoint:
            command.extend(["--entrypoint", request.entrypoint])
        command.append(request.image)
        command.extend(request.args)
        return command

    async def execute(
        self, request: ExecutionRequest, cancel: anyio.Event | None = None
    ) -> ExecutionResult:
        """Run the request and capture its output.

        Raises:
            ExecutorError: If the working directory does not exist.
            StepCancelledError: If ``cancel`` is set before the command exits.
        """
        cwd = request.cwd or self._workspace
        if not cwd.is_dir():
            raise ExecutorError(
                f"Working directory does not exist: {cwd}", exit_code=-1
            )
        if not request.args and request.image is None:
            raise ExecutorError("No command to execute", exit_code=-1)

        command = self._command(request, cwd)
        env = os.environ.copy()
        env.update(request.env)

        start_time = time.monotonic()
        logger.debug("command_started", command=command[0], cwd=str(cwd))
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=env,
            )
        except FileNotFoundError:
            return ExecutionResult(
                exit_code=127,
                stdout="",
                stderr=f"Command not found: {command[0]}",
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )
        except PermissionError:
            return ExecutionResult(
                exit_code=126,
                stdout="",
                stderr=f"Permission denied: {command[0]}",
                duration_ms=int((time.monotonic() - start_time) * 1000),
            )

        cancelled = False
        stdout_bytes = b""
        stderr_bytes = b""
        try:
            async with anyio.create_task_group() as tg:

                async def watch_cancel(event: anyio.Event) -> None:
                    nonlocal cancelled
                    await event.wait()
                    cancelled = True
                    tg.cancel_scope.cancel()

                if cancel is not None:
                    tg.start_soon(watch_cancel, cancel)
                stdout_bytes, stderr_bytes = await process.communicate()
                tg.cancel_scope.cancel()
        finally:
            if process.returncode is None:
                with anyio.CancelScope(shield=True):
                    await self._terminate(process)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if cancelled:
            raise StepCancelledError(f"Command cancelled after {duration_ms}ms")

        result = ExecutionResult(
            exit_code=process.returncode or 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
        )
        logger.debug(
            "command_completed",
            command=command[0],
            exit_code=result.exit_code,
            duration_ms=duration_ms,
        )
        return result

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Stop a running process: SIGTERM, grace period, then SIGKILL."""
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=TERMINATION_GRACE_PERIOD)
        except TimeoutError:
            process.kill()
            await process.wait()
