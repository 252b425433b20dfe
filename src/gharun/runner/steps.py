"""Step planning: turn one workflow step into pre/main/post task runners.

Step kinds form a closed set chosen by :func:`new_step`:

- :class:`RunStep` for ``run:`` scripts
- :class:`ActionStep` for ``uses: owner/repo@ref`` and ``uses: ./path``
- :class:`DockerStep` for ``uses: docker://image``

Every kind has a main phase. Kinds that prepare something before any step
runs implement ``setup``; actions with ``pre``/``post`` entrypoints add
those phases. The job planner orders them: all setups, all pre phases, all
main phases, then all post phases.
"""

from __future__ import annotations

import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import anyio

from gharun.constants import DEFAULT_SHELL, DOCKER_IMAGE_PREFIX, ENV_FILE_VARIABLES
from gharun.context import RunContext
from gharun.exceptions import (
    ActionError,
    ExecutorError,
    GharunError,
    RunnerError,
    StepTimeoutError,
)
from gharun.expressions import ExprString, evaluate_condition
from gharun.logging import get_logger
from gharun.model.action import Action, ActionLoader
from gharun.model.enums import ActionRunsUsing, Conclusion, StepStage, StepType
from gharun.model.workflow import Defaults, Step
from gharun.runner.commands import CommandProcessor
from gharun.runner.envfiles import EnvironmentFiles
from gharun.runner.executor import CancelSignal, ExecutionRequest, Executor
from gharun.runner.task import PreRunFn, TaskResult, TaskRunner

__all__ = [
    "StepRuntime",
    "StepPlan",
    "BaseStep",
    "RunStep",
    "ActionStep",
    "DockerStep",
    "new_step",
    "step_condition",
    "step_display_name",
]

logger = get_logger(__name__)

# shell -> (script extension, argument template, script prefix, script suffix)
_SHELLS: dict[str, tuple[str, tuple[str, ...], str, str]] = {
    "bash": (
        ".sh",
        ("bash", "--noprofile", "--norc", "-e", "-o", "pipefail", "{0}"),
        "",
        "",
    ),
    "sh": (".sh", ("sh", "-e", "{0}"), "", ""),
    "python": (".py", ("python", "{0}"), "", ""),
    "pwsh": (
        ".ps1",
        ("pwsh", "-command", ". '{0}'"),
        "$ErrorActionPreference = 'stop'",
        "if ((Test-Path -LiteralPath variable:/LASTEXITCODE)) { exit $LASTEXITCODE }",
    ),
}

# A run step that declares no shell anywhere gets plain ``bash -e``
_UNSPECIFIED_BASH = ("bash", "-e", "{0}")


@dataclass(frozen=True, slots=True)
class StepRuntime:
    """Collaborators shared by the steps of one job run.

    Attributes:
        executor: Runs step commands.
        actions: Resolves ``uses`` references.
        defaults: ``defaults.run`` of the workflow and the job, job first.
        cancel: Set when the job run must stop; running commands are killed.
    """

    executor: Executor
    actions: ActionLoader
    defaults: tuple[Defaults, ...] = ()
    cancel: CancelSignal | None = None

    def default_shell(self) -> str | None:
        for defaults in self.defaults:
            if defaults.run.shell:
                return defaults.run.shell
        return None

    def default_working_directory(self) -> str | None:
        for defaults in self.defaults:
            if defaults.run.working_directory:
                return defaults.run.working_directory
        return None


@dataclass(slots=True)
class StepPlan:
    """Task runners planned for one step, by phase."""

    setup: BaseStep | None
    pre: TaskRunner[RunContext] | None
    main: TaskRunner[RunContext]
    post: TaskRunner[RunContext] | None


async def step_condition(
    condition: str | None, ctx: RunContext
) -> tuple[bool, Conclusion | None]:
    """Evaluate an ``if`` value; a false condition skips the phase."""
    if evaluate_condition(condition, ctx):
        return True, None
    return False, Conclusion.SKIPPED


def step_display_name(step: Step, prefix: str = "") -> str:
    """Name shown for a step phase, e.g. ``Run echo hi`` or ``Post Checkout``."""
    if step.name is not None and step.name.raw:
        label = step.name.raw
    elif step.type is StepType.RUN and step.run is not None:
        label = step.run.raw.strip().split("\n", 1)[0]
    elif step.uses:
        label = step.uses
    else:
        label = step.id
    return f"{prefix} {label}".strip()


class BaseStep(ABC):
    """Behaviour shared by every step kind.

    Subclasses implement :meth:`main`, and optionally :meth:`setup`,
    :meth:`pre`/:meth:`pre_condition` and :meth:`post`/:meth:`post_condition`.
    """

    has_setup = False
    has_pre = False
    has_post = False

    def __init__(self, step: Step, runtime: StepRuntime) -> None:
        self.step = step
        self.runtime = runtime
        self._processor = CommandProcessor()

    # Phases -----------------------------------------------------------

    async def setup(self, ctx: RunContext) -> None:
        """Prepare the step once, before any phase of any step runs."""

    async def condition(self, ctx: RunContext) -> tuple[bool, Conclusion | None]:
        return await step_condition(self.step.if_, ctx)

    @abstractmethod
    async def main(self, ctx: RunContext) -> Conclusion:
        """Run the step itself and return its outcome."""

    async def pre_condition(self, ctx: RunContext) -> tuple[bool, Conclusion | None]:
        return False, None

    async def pre(self, ctx: RunContext) -> Conclusion:
        return Conclusion.SUCCESS

    async def post_condition(self, ctx: RunContext) -> tuple[bool, Conclusion | None]:
        return False, None

    async def post(self, ctx: RunContext) -> Conclusion:
        return Conclusion.SUCCESS

    async def prepare(self, ctx: RunContext, stage: StepStage) -> None:
        """Hook run after the step is set on the context for a phase."""

    # Planning ---------------------------------------------------------

    def plan(self) -> StepPlan:
        """Build the task runners for this step's phases."""
        pre = None
        if self.has_pre:
            pre = TaskRunner(
                step_display_name(self.step, "Pre"),
                self.pre,
                pre_fn=self._enter(StepStage.PRE, "Pre"),
                condition_fn=self.pre_condition,
                post_fn=self._exit,
            )

        prefix = "" if self.step.name is not None and self.step.name.raw else "Run"
        main = TaskRunner(
            step_display_name(self.step, prefix),
            self.main,
            pre_fn=self._enter(StepStage.MAIN, prefix),
            condition_fn=self.condition,
            post_fn=self._exit,
        )

        post = None
        if self.has_post:
            post = TaskRunner(
                step_display_name(self.step, "Post"),
                self.post,
                pre_fn=self._enter(StepStage.POST, "Post"),
                condition_fn=self.post_condition,
                post_fn=self._exit,
            )

        return StepPlan(
            setup=self if self.has_setup else None, pre=pre, main=main, post=post
        )

    def _enter(self, stage: StepStage, prefix: str) -> PreRunFn[RunContext]:
        async def enter(ctx: RunContext) -> None:
            name = step_display_name(self.step, prefix)
            if self.step.name is not None and self.step.name.is_expression:
                name = f"{prefix} {self.step.name.resolve(ctx)}".strip()
            try:
                ctx.set_step(self.step, name, stage)
                await self.prepare(ctx, stage)
            except Exception:
                ctx.unset_step(Conclusion.FAILURE)
                raise

        return enter

    async def _exit(self, ctx: RunContext, result: TaskResult) -> None:
        conclusion = result.conclusion
        if conclusion is None and result.ran:
            # Interrupted by the job timeout or cancellation
            conclusion = Conclusion.CANCELLED
        ctx.unset_step(conclusion)

    # Execution --------------------------------------------------------

    async def execute(self, ctx: RunContext, request: ExecutionRequest) -> Conclusion:
        """Run a command for the current phase and record its results.

        A failing command fails the step unless ``continue-on-error`` is
        set, in which case the outcome is ``failure`` but the conclusion is
        ``success``.
        """
        continue_on_error = self.step.continue_on_error.resolve(ctx)
        try:
            await self._run_command(ctx, request)
        except (GharunError, OSError) as e:
            if continue_on_error:
                logger.warning(
                    "step_failed_continuing", step_id=self.step.id, error=str(e)
                )
                ctx.set_step_results(Conclusion.SUCCESS, Conclusion.FAILURE)
                return Conclusion.SUCCESS
            ctx.set_step_results(Conclusion.FAILURE, Conclusion.FAILURE)
            raise

        ctx.set_step_results(Conclusion.SUCCESS, Conclusion.SUCCESS)
        return Conclusion.SUCCESS

    def scratch_dir(self, ctx: RunContext) -> Path:
        """Per-step directory for scripts and environment files."""
        run_id = ctx.job_run.run_id if ctx.job_run is not None else "job"
        return ctx.config.scratch_dir / "steps" / run_id / self.step.id

    async def _run_command(self, ctx: RunContext, request: ExecutionRequest) -> None:
        stage = ctx.step_run.stage if ctx.step_run is not None else "main"
        files = EnvironmentFiles.create(self.scratch_dir(ctx) / f"env_files_{stage}")
        file_variables = files.variables()
        for kind, variable in ENV_FILE_VARIABLES.items():
            ctx.set_github_value(kind, file_variables[variable])

        try:
            env = {**ctx.step_environment(), **file_variables, **request.env}
            request = ExecutionRequest(
                args=request.args,
                env=env,
                cwd=request.cwd,
                image=request.image,
                entrypoint=request.entrypoint,
            )

            timeout_minutes = None
            if self.step.timeout_minutes is not None:
                timeout_minutes = self.step.timeout_minutes.resolve(ctx)

            # Commands started after cancellation run to completion
            cancel = None
            if self.runtime.cancel is not None and not self.runtime.cancel.is_set():
                cancel = self.runtime.cancel.event

            try:
                with anyio.fail_after(
                    timeout_minutes * 60 if timeout_minutes is not None else None
                ):
                    result = await self.runtime.executor.execute(request, cancel)
            except TimeoutError as e:
                raise StepTimeoutError(
                    f"The step exceeded its timeout of {timeout_minutes} minutes",
                    timeout_minutes=timeout_minutes or 0,
                ) from e
        finally:
            for kind in ENV_FILE_VARIABLES:
                ctx.unset_github_value(kind)

        self._processor.process_output(ctx, result.stdout)
        files.apply(ctx)

        if not result.success:
            if result.stderr:
                logger.info("step_stderr", output=result.stderr)
            raise ExecutorError(
                f"Process completed with exit code {result.exit_code}",
                exit_code=result.exit_code,
                stderr=result.stderr,
            )


class RunStep(BaseStep):
    """A ``run:`` step: the script is written to a file and run by a shell."""

    def _shell(self, ctx: RunContext) -> tuple[str, tuple[str, ...], str, str]:
        shell = self.step.shell or self.runtime.default_shell()
        if shell is None:
            if ctx.config.default_shell == DEFAULT_SHELL:
                return _SHELLS["bash"][0], _UNSPECIFIED_BASH, "", ""
            shell = ctx.config.default_shell
        if shell not in _SHELLS:
            raise RunnerError(f"Unsupported shell: {shell}")
        return _SHELLS[shell]

    def _working_directory(self, ctx: RunContext) -> Path:
        if self.step.working_directory is not None:
            directory = self.step.working_directory.resolve(ctx)
        else:
            directory = self.runtime.default_working_directory() or ""
        return ctx.workspace / directory if directory else ctx.workspace

    async def main(self, ctx: RunContext) -> Conclusion:
        extension, template, prefix, suffix = self._shell(ctx)
        assert self.step.run is not None
        script = self.step.run.resolve(ctx)

        path = self.scratch_dir(ctx) / f"run{extension}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{prefix}\n{script}\n{suffix}")
        path.chmod(0o755)

        args = tuple(part.replace("{0}", str(path)) for part in template)
        request = ExecutionRequest(args=args, cwd=self._working_directory(ctx))
        return await self.execute(ctx, request)


class ActionStep(BaseStep):
    """A ``uses:`` step running a JavaScript or docker action.

    The action is loaded during setup. JavaScript actions run with ``node``
    from the action directory; docker actions run their image with the
    workspace mounted. Composite actions are not supported.
    """

    has_setup = True
    has_pre = True
    has_post = True

    def __init__(self, step: Step, runtime: StepRuntime) -> None:
        super().__init__(step, runtime)
        self.action: Action | None = None
        self._image: str | None = None

    async def setup(self, ctx: RunContext) -> None:
        assert self.step.uses is not None
        action = self.runtime.actions.load(self.step.uses)
        runs = action.meta.runs
        if runs.using is ActionRunsUsing.COMPOSITE:
            raise ActionError(
                f"Composite action '{self.step.uses}' is not supported",
                uses=self.step.uses,
            )
        logger.info("action_prepared", uses=self.step.uses, path=str(action.path))

        if runs.using is ActionRunsUsing.DOCKER:
            image = runs.image or ""
            if image.startswith(DOCKER_IMAGE_PREFIX):
                self._image = image[len(DOCKER_IMAGE_PREFIX) :]
            elif image.endswith("Dockerfile"):
                self._image = await self._build_image(ctx, action, image)
            else:
                raise ActionError(f"Invalid docker image: {image}", uses=self.step.uses)
        self.action = action

    async def _build_image(
        self, ctx: RunContext, action: Action, dockerfile: str
    ) -> str:
        tag = "gharun/" + "-".join(
            part.lower() for part in action.path.parts[-2:] if part
        ).replace("@", "-")
        args = ("docker", "build", "-t", tag, "-f", str(action.path / dockerfile))
        request = ExecutionRequest(args=(*args, str(action.path)), cwd=action.path)
        result = await self.runtime.executor.execute(request)
        if not result.success:
            raise ActionError(
                f"Failed to build image for '{self.step.uses}': "
                f"{result.stderr.strip()}",
                uses=self.step.uses,
            )
        return tag

    async def prepare(self, ctx: RunContext, stage: StepStage) -> None:
        """Expose ``with`` values plus input defaults as ``inputs``."""
        if self.action is None:
            return
        inputs = {key: value.resolve(ctx) for key, value in self.step.with_.items()}
        for key, default in self.action.meta.input_defaults().items():
            if key not in inputs:
                inputs[key] = ExprString(default).resolve(ctx)
        ctx.set_action_inputs(inputs)

    async def pre_condition(self, ctx: RunContext) -> tuple[bool, Conclusion | None]:
        if self.action is None or self.action.meta.runs.pre_script is None:
            return False, None
        return await step_condition(self.action.meta.runs.pre_if or "always()", ctx)

    async def post_condition(self, ctx: RunContext) -> tuple[bool, Conclusion | None]:
        if self.action is None or self.action.meta.runs.post_script is None:
            return False, None
        # Post phases only follow main phases that ran
        main = ctx.steps.get(self.step.id)
        if main is None or main.conclusion in (None, Conclusion.SKIPPED):
            return False, None
        return await step_condition(self.action.meta.runs.post_if or "always()", ctx)

    def _request(self, ctx: RunContext, script: str | None) -> ExecutionRequest:
        if self.action is None:
            raise ActionError(
                f"Action '{self.step.uses}' is not set up", uses=self.step.uses
            )
        runs = self.action.meta.runs
        env = {key: ExprString(value).resolve(ctx) for key, value in runs.env.items()}
        if runs.using is ActionRunsUsing.DOCKER:
            args = tuple(ExprString(arg).resolve(ctx) for arg in runs.args)
            return ExecutionRequest(
                args=args,
                env=env,
                cwd=ctx.workspace,
                image=self._image,
                entrypoint=script,
            )
        if runs.using.is_node and script:
            return ExecutionRequest(
                args=("node", str(self.action.path / script)),
                env=env,
                cwd=ctx.workspace,
            )
        raise ActionError(
            f"Invalid action runs using: {runs.using.value}", uses=self.step.uses
        )

    async def pre(self, ctx: RunContext) -> Conclusion:
        assert self.action is not None
        request = self._request(ctx, self.action.meta.runs.pre_script)
        return await self.execute(ctx, request)

    async def main(self, ctx: RunContext) -> Conclusion:
        if self.action is None:
            raise ActionError(
                f"Action '{self.step.uses}' is not set up", uses=self.step.uses
            )
        runs = self.action.meta.runs
        script = runs.entrypoint if runs.using is ActionRunsUsing.DOCKER else runs.main
        return await self.execute(ctx, self._request(ctx, script))

    async def post(self, ctx: RunContext) -> Conclusion:
        assert self.action is not None
        request = self._request(ctx, self.action.meta.runs.post_script)
        return await self.execute(ctx, request)


class DockerStep(BaseStep):
    """A ``uses: docker://image`` step.

    ``with.args`` and ``with.entrypoint`` override the image's command and
    entrypoint; other ``with`` values are passed as ``INPUT_*`` variables.
    """

    has_setup = True

    @property
    def image(self) -> str:
        assert self.step.uses is not None
        return self.step.uses[len(DOCKER_IMAGE_PREFIX) :]

    async def setup(self, ctx: RunContext) -> None:
        logger.info("image_pull", image=self.image)

    async def prepare(self, ctx: RunContext, stage: StepStage) -> None:
        inputs = {
            key: value.resolve(ctx)
            for key, value in self.step.with_.items()
            if key not in ("args", "entrypoint")
        }
        ctx.set_action_inputs(inputs)

    async def main(self, ctx: RunContext) -> Conclusion:
        args: tuple[str, ...] = ()
        entrypoint = None
        if "args" in self.step.with_:
            args = tuple(shlex.split(self.step.with_["args"].resolve(ctx)))
        if "entrypoint" in self.step.with_:
            entrypoint = self.step.with_["entrypoint"].resolve(ctx)
        request = ExecutionRequest(
            args=args, cwd=ctx.workspace, image=self.image, entrypoint=entrypoint
        )
        return await self.execute(ctx, request)


def new_step(step: Step, runtime: StepRuntime) -> BaseStep:
    """Create the step kind for ``step``."""
    step_type = step.type
    if step_type is StepType.RUN:
        return RunStep(step, runtime)
    if step_type is StepType.DOCKER:
        return DockerStep(step, runtime)
    if step_type is StepType.ACTION:
        return ActionStep(step, runtime)
    raise RunnerError(f"Unknown step type: {step_type}")
