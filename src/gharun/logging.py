"""Structured logging configuration for gharun.

This module provides structlog-based logging with:
- JSON output for machine consumption (when GHARUN_LOG_FORMAT=json)
- Pretty console output by default
- Context binding for workflow, job and step identifiers
- Redaction of values registered through ``add-mask`` and configured secrets

Usage:
    from gharun.logging import get_logger, configure_logging

    configure_logging()

    log = get_logger(__name__)
    log.info("job_started", job_id="build")
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog
from structlog.types import Processor

from gharun.constants import MASK_REPLACEMENT

__all__ = [
    "get_logger",
    "configure_logging",
    "bind_context",
    "clear_context",
    "register_mask",
    "mask_text",
]

# Environment variable for log format
LOG_FORMAT_ENV_VAR = "GHARUN_LOG_FORMAT"

# Environment variable for log level
LOG_LEVEL_ENV_VAR = "GHARUN_LOG_LEVEL"

DEFAULT_LOG_LEVEL = "INFO"

# Values redacted from every rendered event
_masks: set[str] = set()


def register_mask(value: str) -> None:
    """Register a value that must never appear in log output.

    Blank values are ignored; masking them would blank out every message.

    Args:
        value: Secret text to redact.
    """
    if value and value.strip():
        _masks.add(value)


def mask_text(text: str) -> str:
    """Replace every registered mask value in ``text`` with ``***``."""
    # Longest first so a mask containing another is not partially redacted
    for value in sorted(_masks, key=len, reverse=True):
        if value in text:
            text = text.replace(value, MASK_REPLACEMENT)
    return text


def _redact_masks(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor applying :func:`mask_text` to string fields."""
    if not _masks:
        return event_dict
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = mask_text(value)
    return event_dict


def _get_log_level() -> int:
    level_name = os.environ.get(LOG_LEVEL_ENV_VAR, DEFAULT_LOG_LEVEL).upper()
    return getattr(logging, level_name, logging.INFO)


def _is_json_output() -> bool:
    return os.environ.get(LOG_FORMAT_ENV_VAR, "").lower() == "json"


def _get_shared_processors() -> list[Processor]:
    """Get processors shared between stdlib and structlog loggers."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_masks,
    ]


def _get_renderer(use_json: bool) -> Processor:
    if use_json:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=sys.stderr.isatty(),
        exception_formatter=structlog.dev.plain_traceback,
    )


def configure_logging(
    *,
    force_json: bool = False,
    level: int | None = None,
) -> None:
    """Configure structlog for gharun.

    Call once at startup; calling again reconfigures logging.

    Args:
        force_json: Force JSON output regardless of GHARUN_LOG_FORMAT.
        level: Override log level. If None, reads GHARUN_LOG_LEVEL.
    """
    use_json = force_json or _is_json_output()
    log_level = level if level is not None else _get_log_level()

    exception_processor: Processor = (
        structlog.processors.dict_tracebacks
        if use_json
        else structlog.processors.format_exc_info
    )

    structlog.configure(
        processors=[
            *_get_shared_processors(),
            exception_processor,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route stdlib loggers through the same renderer
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _get_renderer(use_json),
            ],
            foreign_pre_chain=_get_shared_processors(),
        )
    )
    root_logger.addHandler(handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name. If None, uses the caller's module name.

    Returns:
        A bound structlog logger.
    """
    log: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return log


def bind_context(**context: Any) -> None:
    """Bind values included in every log event of the current task.

    Uses structlog's contextvars, so values follow anyio tasks and do not
    leak between concurrently running jobs.

    Example:
        bind_context(workflow="ci", job_id="build")
        log.info("step_started")  # Includes workflow and job_id
    """
    structlog.contextvars.bind_contextvars(**context)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()
