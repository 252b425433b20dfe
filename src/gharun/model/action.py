"""Action metadata (``action.yml``) and resolution of ``uses`` references."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gharun.exceptions import ActionError
from gharun.logging import get_logger
from gharun.model.enums import ActionRunsUsing

__all__ = [
    "ActionInput",
    "ActionOutput",
    "ActionRuns",
    "ActionMeta",
    "Action",
    "ActionLoader",
    "parse_uses",
]

logger = get_logger(__name__)

_METADATA_FILES = ("action.yml", "action.yaml")

# owner/repo[/path]@ref
_REMOTE_USES = re.compile(
    r"^(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)(?:/(?P<path>[^@]+))?@(?P<ref>.+)$"
)


class _Metadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ActionInput(_Metadata):
    description: str = ""
    default: str | None = None
    required: bool = False
    deprecation_message: str | None = Field(default=None, alias="deprecationMessage")

    @field_validator("default", mode="before")
    @classmethod
    def stringify_default(cls, v: Any) -> Any:
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        return v


class ActionOutput(_Metadata):
    description: str = ""
    value: str | None = None


class ActionRuns(_Metadata):
    """The ``runs`` section: how the action executes.

    JavaScript actions use ``main``/``pre``/``post``; docker actions use
    ``image`` and the entrypoint fields; composite actions list ``steps``.
    """

    using: ActionRunsUsing
    env: dict[str, str] = Field(default_factory=dict)
    main: str | None = None
    pre: str | None = None
    pre_if: str | None = Field(default=None, alias="pre-if")
    post: str | None = None
    post_if: str | None = Field(default=None, alias="post-if")
    image: str | None = None
    entrypoint: str | None = None
    pre_entrypoint: str | None = Field(default=None, alias="pre-entrypoint")
    post_entrypoint: str | None = Field(default=None, alias="post-entrypoint")
    args: list[str] = Field(default_factory=list)
    steps: list[dict[str, Any]] = Field(default_factory=list)

    @field_validator("using", mode="before")
    @classmethod
    def normalize_using(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v

    @property
    def pre_script(self) -> str | None:
        """Pre entrypoint for the action's runtime, if any."""
        if self.using is ActionRunsUsing.DOCKER:
            return self.pre_entrypoint
        return self.pre

    @property
    def post_script(self) -> str | None:
        """Post entrypoint for the action's runtime, if any."""
        if self.using is ActionRunsUsing.DOCKER:
            return self.post_entrypoint
        return self.post


class ActionMeta(_Metadata):
    name: str = ""
    author: str = ""
    description: str = ""
    inputs: dict[str, ActionInput] = Field(default_factory=dict)
    outputs: dict[str, ActionOutput] = Field(default_factory=dict)
    runs: ActionRuns

    def input_defaults(self) -> dict[str, str]:
        """Inputs that declare a default value."""
        return {
            name: definition.default
            for name, definition in self.inputs.items()
            if definition.default is not None
        }


class Action(BaseModel):
    """An action resolved to a directory on disk.

    Attributes:
        uses: The reference as written in the step.
        path: Directory containing the action's metadata file.
        meta: Parsed metadata.
    """

    uses: str
    path: Path
    meta: ActionMeta


def parse_uses(uses: str) -> tuple[str, str, str, str]:
    """Split ``owner/repo[/path]@ref`` into its parts.

    Raises:
        ActionError: If ``uses`` is not a remote action reference.
    """
    match = _REMOTE_USES.match(uses)
    if match is None:
        raise ActionError(f"Invalid action reference '{uses}'", uses=uses)
    return (
        match.group("owner"),
        match.group("repo"),
        match.group("path") or "",
        match.group("ref"),
    )


class ActionLoader:
    """Resolve ``uses`` references to local action directories.

    Local references (``./path``) resolve against the workspace. Remote
    references resolve against ``actions_dir`` laid out as
    ``<owner>/<repo>@<ref>[/<path>]``; fetching them is left to the caller.
    """

    def __init__(self, workspace: Path, actions_dir: Path) -> None:
        self._workspace = workspace
        self._actions_dir = actions_dir
        self._cache: dict[str, Action] = {}

    def resolve_path(self, uses: str) -> Path:
        if uses.startswith("./") or uses.startswith("../"):
            return (self._workspace / uses).resolve()
        owner, repo, path, ref = parse_uses(uses)
        directory = self._actions_dir / owner / f"{repo}@{ref}"
        return directory / path if path else directory

    def load(self, uses: str) -> Action:
        """Load and cache the action referenced by ``uses``.

        Raises:
            ActionError: If the directory or metadata file is missing, or the
                metadata is invalid.
        """
        if uses in self._cache:
            return self._cache[uses]

        directory = self.resolve_path(uses)
        metadata_file = next(
            (
                directory / name
                for name in _METADATA_FILES
                if (directory / name).is_file()
            ),
            None,
        )
        if metadata_file is None:
            raise ActionError(
                f"Action '{uses}' not found: no action.yml in {directory}", uses=uses
            )

        try:
            data = yaml.safe_load(metadata_file.read_text())
            meta = ActionMeta.model_validate(data)
        except yaml.YAMLError as e:
            raise ActionError(f"Invalid YAML in {metadata_file}: {e}", uses=uses) from e
        except ValidationError as e:
            first_error = e.errors()[0]
            location = ".".join(str(loc) for loc in first_error["loc"])
            raise ActionError(
                f"Invalid action metadata in {metadata_file}: "
                f"{location}: {first_error['msg']}",
                uses=uses,
            ) from e

        action = Action(uses=uses, path=directory, meta=meta)
        self._cache[uses] = action
        logger.debug(
            "action_loaded",
            uses=uses,
            path=str(directory),
            using=meta.runs.using.value,
        )
        return action
