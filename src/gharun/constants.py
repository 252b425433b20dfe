"""Constants shared across gharun.

Single source of truth for size limits, default names and environment
variable names used by the planners and the executor.
"""

from __future__ import annotations

# =============================================================================
# Size Limits
# =============================================================================

#: One mebibyte, the unit used by the hosted runner for output limits
MB: int = 1024 * 1024

#: A single job output larger than this is reported as a warning
MAX_JOB_OUTPUT_SIZE: int = 1 * MB

#: Combined job outputs larger than this are reported as a warning
MAX_TOTAL_JOB_OUTPUT_SIZE: int = 50 * MB

# =============================================================================
# Task Names
# =============================================================================

#: Name of the synthetic task that prepares every step of a job
SETUP_JOB_TASK_NAME: str = "Set up job"

#: Name of the synthetic task that closes a job
COMPLETE_JOB_TASK_NAME: str = "Complete job"

# =============================================================================
# Expressions
# =============================================================================

#: Status functions; an ``if`` using none of them is guarded by ``success()``
STATUS_FUNCTIONS: frozenset[str] = frozenset(
    {"success", "failure", "cancelled", "always"}
)

#: Replacement written in place of masked values
MASK_REPLACEMENT: str = "***"

# =============================================================================
# Runner Defaults
# =============================================================================

#: Shell used when a run step does not declare one
DEFAULT_SHELL: str = "bash"

#: Prefix of a step ``uses`` value that references a container image
DOCKER_IMAGE_PREFIX: str = "docker://"

#: Environment variables pointing at the per-step environment files
ENV_FILE_VARIABLES: dict[str, str] = {
    "env": "GITHUB_ENV",
    "path": "GITHUB_PATH",
    "output": "GITHUB_OUTPUT",
    "state": "GITHUB_STATE",
    "step_summary": "GITHUB_STEP_SUMMARY",
}
