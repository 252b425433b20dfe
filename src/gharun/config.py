from __future__ import annotations

import os
import platform
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from gharun.constants import DEFAULT_SHELL
from gharun.exceptions import ConfigError
from gharun.logging import get_logger

__all__ = [
    "RunnerConfig",
    "GitHubConfig",
    "RunnerInfoConfig",
    "load_config",
    "get_user_config_path",
    "PROJECT_CONFIG_FILENAME",
]

logger = get_logger(__name__)

PROJECT_CONFIG_FILENAME = ".gharun.yaml"


def _runner_os() -> str:
    return {"Darwin": "macOS", "Windows": "Windows"}.get(platform.system(), "Linux")


def _runner_arch() -> str:
    machine = platform.machine().lower()
    if machine in ("arm64", "aarch64"):
        return "ARM64"
    if machine in ("armv7l", "arm"):
        return "ARM"
    return "X64"


class GitHubConfig(BaseModel):
    """Values exposed through the ``github`` expression context.

    Attributes:
        repository: ``owner/name`` of the repository being run.
        ref: Fully-formed ref that triggered the run (refs/heads/main).
        sha: Commit the run is for.
        actor: Login of the user that triggered the run.
        event_name: Name of the triggering event.
        server_url: Base URL of the GitHub server.
        token: Token exposed as ``github.token`` and ``secrets.GITHUB_TOKEN``.
        run_id: Unique id of the run.
        run_number: Sequential number of the run.
    """

    repository: str = ""
    ref: str = "refs/heads/main"
    sha: str = ""
    actor: str = "gharun"
    event_name: str = "push"
    server_url: str = "https://github.com"
    api_url: str = "https://api.github.com"
    token: str | None = None
    run_id: str = "1"
    run_number: str = "1"
    run_attempt: str = "1"


class RunnerInfoConfig(BaseModel):
    """Values exposed through the ``runner`` expression context."""

    name: str = "gharun"
    os: str = Field(default_factory=_runner_os)
    arch: str = Field(default_factory=_runner_arch)
    temp: Path | None = None
    tool_cache: Path | None = None
    debug: bool = False


class YamlConfigSource(PydanticBaseSettingsSource):
    """Settings source that loads values from a YAML file."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: Path | None = None,
    ):
        super().__init__(settings_cls)
        self.yaml_file = yaml_file
        self._config_data: dict[str, Any] = {}
        if yaml_file and yaml_file.exists():
            try:
                with open(yaml_file) as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(
                    message=f"Invalid YAML in {yaml_file}: {e}",
                    field=None,
                    value=None,
                ) from e
            if loaded is None:
                logger.warning("config_file_empty", path=str(yaml_file))
            elif not isinstance(loaded, dict):
                raise ConfigError(
                    message=f"Config file {yaml_file} must contain a mapping",
                    value=loaded,
                )
            else:
                self._config_data = loaded

    def get_field_value(
        self, field: FieldInfo, field_name: str
    ) -> tuple[Any, str, bool]:
        if field_name in self._config_data:
            return self._config_data[field_name], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        return self._config_data


class RunnerConfig(BaseSettings):
    """Root configuration object for a local run.

    Constructed once and handed to the run context and planners; nothing in
    gharun reads configuration from a global.

    Attributes:
        workspace: Checkout the workflow runs against (``github.workspace``).
        run_dir: Directory receiving per-run diagnostic JSON. None disables it.
        actions_dir: Directory holding local checkouts of ``uses:`` actions,
            laid out as ``<owner>/<repo>@<ref>``.
        temp_dir: Scratch directory for scripts and environment files.
        max_parallel: Concurrent job limit when a job sets no
            ``strategy.max-parallel``. Zero means unbounded.
        default_shell: Shell for run steps that declare none.
        secrets: Values of the ``secrets`` context. Every value is masked.
        vars: Values of the ``vars`` context.
    """

    model_config = SettingsConfigDict(
        env_prefix="GHARUN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    workspace: Path = Field(default_factory=Path.cwd)
    run_dir: Path | None = Path(".gharun/runs")
    actions_dir: Path = Path(".gharun/actions")
    temp_dir: Path | None = None
    github: GitHubConfig = Field(default_factory=GitHubConfig)
    runner: RunnerInfoConfig = Field(default_factory=RunnerInfoConfig)
    max_parallel: int = Field(default=0, ge=0)
    default_shell: str = DEFAULT_SHELL
    secrets: dict[str, str] = Field(default_factory=dict)
    vars: dict[str, str] = Field(default_factory=dict)

    @field_validator("workspace")
    @classmethod
    def check_workspace_exists(cls, v: Path) -> Path:
        """Warn if the workspace does not exist."""
        if not v.exists():
            logger.warning("workspace_missing", path=str(v))
        return v

    def resolve(self, path: Path) -> Path:
        """Resolve a configured path relative to the workspace."""
        return path if path.is_absolute() else self.workspace / path

    @property
    def scratch_dir(self) -> Path:
        """Directory for generated scripts and environment files."""
        if self.temp_dir is not None:
            return self.resolve(self.temp_dir)
        if self.runner.temp is not None:
            return self.resolve(self.runner.temp)
        return self.workspace / ".gharun" / "tmp"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customize the order of settings sources.

        Priority (highest to lowest):
        1. Init kwargs
        2. Environment variables (GHARUN_*)
        3. Project YAML config (./.gharun.yaml)
        4. User YAML config (~/.config/gharun/config.yaml)
        """
        return (
            init_settings,
            env_settings,
            YamlConfigSource(settings_cls, _project_config_path()),
            YamlConfigSource(settings_cls, get_user_config_path()),
        )


# Set by load_config so settings_customise_sources sees an explicit path
_project_config_override: Path | None = None


def _project_config_path() -> Path:
    if _project_config_override is not None:
        return _project_config_override
    return Path.cwd() / PROJECT_CONFIG_FILENAME


def get_user_config_path() -> Path:
    """Get the path to the user configuration file.

    Honors XDG_CONFIG_HOME when set.

    Returns:
        Path to ~/.config/gharun/config.yaml
    """
    base = os.environ.get("XDG_CONFIG_HOME")
    root = Path(base) if base else Path.home() / ".config"
    return root / "gharun" / "config.yaml"


def load_config(config_path: Path | None = None, **overrides: Any) -> RunnerConfig:
    """Load configuration with hierarchy: defaults -> user -> project -> env.

    Args:
        config_path: Optional project config file. Defaults to ./.gharun.yaml
        **overrides: Values that take precedence over every other source.

    Returns:
        RunnerConfig with merged configuration.

    Raises:
        ConfigError: If configuration is invalid.
    """
    global _project_config_override

    if config_path is not None and not config_path.exists():
        raise ConfigError(
            f"Config file not found: {config_path}",
            field="config_path",
            value=str(config_path),
        )

    _project_config_override = config_path
    try:
        return RunnerConfig(**overrides)
    except ValidationError as e:
        first_error = e.errors()[0]
        field = ".".join(str(loc) for loc in first_error["loc"])
        raise ConfigError(
            message=f"Invalid configuration: {first_error['msg']}",
            field=field,
            value=first_error.get("input"),
        ) from e
    finally:
        _project_config_override = None
