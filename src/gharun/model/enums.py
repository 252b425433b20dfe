"""Enumerations shared by documents, run records and the planners."""

from __future__ import annotations

from enum import Enum


class Conclusion(str, Enum):
    """Final classification of a step, job or workflow run.

    For steps, the conclusion is taken after ``continue-on-error`` is
    applied; the value before it is the outcome.
    """

    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


class Status(str, Enum):
    """Lifecycle state of a task runner: queued -> in_progress -> completed."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class StepStage(str, Enum):
    """Phase of a step a task runner executes."""

    PRE = "pre"
    MAIN = "main"
    POST = "post"


class StepType(str, Enum):
    """Kind of a workflow step.

    The set is closed: a step has ``run`` (RUN), a ``uses`` that names an
    image with ``docker://`` (DOCKER), or any other ``uses`` (ACTION).
    """

    RUN = "run"
    ACTION = "action"
    DOCKER = "docker"


class ActionRunsUsing(str, Enum):
    """Runtime declared by an action's ``runs.using``."""

    NODE12 = "node12"
    NODE16 = "node16"
    NODE20 = "node20"
    DOCKER = "docker"
    COMPOSITE = "composite"

    @property
    def is_node(self) -> bool:
        return self.value.startswith("node")
