"""Workflow document models.

Pydantic models mirroring the GitHub Actions workflow YAML. Field aliases
keep the document spelling (``runs-on``, ``continue-on-error``); fields that
may hold ``${{ }}`` expressions use the literal-or-expression scalars so
their syntax is checked at load time and their values resolved at run time.

Documents are not mutated once loaded; the planners only read them.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from gharun.constants import DOCKER_IMAGE_PREFIX
from gharun.expressions import (
    ExprBool,
    ExprFloat,
    ExprInt,
    ExprString,
    ExpressionSyntaxError,
    parse_condition,
)
from gharun.model.enums import StepType
from gharun.model.matrix import Matrix

__all__ = [
    "RunDefaults",
    "Defaults",
    "Step",
    "Strategy",
    "Job",
    "Workflow",
]


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _condition_text(value: Any) -> Any:
    """``if: true`` arrives from YAML as a bool; conditions are text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _check_condition(value: str | None) -> str | None:
    """Reject malformed conditions when the document is loaded."""
    try:
        parse_condition(value)
    except ExpressionSyntaxError as e:
        raise ValueError(e.message) from e
    return value


class RunDefaults(_Document):
    shell: str | None = None
    working_directory: str | None = Field(default=None, alias="working-directory")


class Defaults(_Document):
    run: RunDefaults = Field(default_factory=RunDefaults)


class Step(_Document):
    """A single job step.

    Exactly one of ``uses`` and ``run`` is set. ``id`` is filled with the
    step's index by the enclosing job when the document leaves it out.
    """

    id: str = ""
    name: ExprString | None = None
    if_: str | None = Field(default=None, alias="if")
    uses: str | None = None
    run: ExprString | None = None
    shell: str | None = None
    env: dict[str, ExprString] = Field(default_factory=dict)
    with_: dict[str, ExprString] = Field(default_factory=dict, alias="with")
    working_directory: ExprString | None = Field(
        default=None, alias="working-directory"
    )
    continue_on_error: ExprBool = Field(
        default_factory=lambda: ExprBool(False), alias="continue-on-error"
    )
    timeout_minutes: ExprFloat | None = Field(default=None, alias="timeout-minutes")

    @field_validator("if_", mode="before")
    @classmethod
    def normalize_condition(cls, v: Any) -> Any:
        return _condition_text(v)

    @field_validator("if_")
    @classmethod
    def check_condition(cls, v: str | None) -> str | None:
        return _check_condition(v)

    @field_validator("id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        return "" if v is None else str(v)

    @model_validator(mode="after")
    def check_uses_or_run(self) -> Step:
        """Ensure the step has exactly one of ``uses`` and ``run``."""
        if (self.uses is None) == (self.run is None):
            raise ValueError("a step must define exactly one of 'uses' or 'run'")
        return self

    @property
    def type(self) -> StepType:
        if self.run is not None:
            return StepType.RUN
        if self.uses is not None and self.uses.startswith(DOCKER_IMAGE_PREFIX):
            return StepType.DOCKER
        return StepType.ACTION


class Strategy(_Document):
    matrix: Matrix = Field(default_factory=Matrix)
    fail_fast: ExprBool = Field(
        default_factory=lambda: ExprBool(True), alias="fail-fast"
    )
    max_parallel: ExprInt | None = Field(default=None, alias="max-parallel")


class Job(_Document):
    """A workflow job.

    ``id`` defaults to the job's key in the workflow ``jobs`` mapping; steps
    without an ``id`` are numbered by position.
    """

    id: str = ""
    name: ExprString | None = None
    if_: str | None = Field(default=None, alias="if")
    runs_on: Any = Field(default=None, alias="runs-on")
    needs: list[str] = Field(default_factory=list)
    strategy: Strategy | None = None
    env: dict[str, ExprString] = Field(default_factory=dict)
    outputs: dict[str, ExprString] = Field(default_factory=dict)
    defaults: Defaults = Field(default_factory=Defaults)
    continue_on_error: ExprBool = Field(
        default_factory=lambda: ExprBool(False), alias="continue-on-error"
    )
    timeout_minutes: ExprFloat | None = Field(default=None, alias="timeout-minutes")
    steps: list[Step] = Field(default_factory=list)

    @field_validator("if_", mode="before")
    @classmethod
    def normalize_condition(cls, v: Any) -> Any:
        return _condition_text(v)

    @field_validator("if_")
    @classmethod
    def check_condition(cls, v: str | None) -> str | None:
        return _check_condition(v)

    @field_validator("needs", mode="before")
    @classmethod
    def normalize_needs(cls, v: Any) -> Any:
        """``needs: build`` is shorthand for ``needs: [build]``."""
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v

    @model_validator(mode="after")
    def assign_step_ids(self) -> Job:
        for index, step in enumerate(self.steps):
            if not step.id:
                step.id = str(index)
        return self

    @property
    def display_name(self) -> str:
        """The name as written, or the job id."""
        return self.name.raw if self.name is not None else self.id


class Workflow(_Document):
    """A workflow document: ``name``, ``on``, ``env`` and ``jobs``."""

    name: str = ""
    on: Any = None
    env: dict[str, ExprString] = Field(default_factory=dict)
    defaults: Defaults = Field(default_factory=Defaults)
    jobs: dict[str, Job] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def restore_on_key(cls, data: Any) -> Any:
        """YAML 1.1 reads a bare ``on`` key as the boolean True."""
        if isinstance(data, dict) and True in data and "on" not in data:
            data = dict(data)
            data["on"] = data.pop(True)
        return data

    @model_validator(mode="after")
    def assign_job_ids(self) -> Workflow:
        for key, job in self.jobs.items():
            if not job.id:
                job.id = key
        return self
