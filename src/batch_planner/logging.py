from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from pathlib import Path

LOG_LEVEL_ENV = "BATCH_PLANNER_LOG_LEVEL"

_LOGGING_CONFIGURED = False


def _level_from_env(default: int = logging.INFO) -> int:
    """Level named by ``BATCH_PLANNER_LOG_LEVEL`` (e.g. "DEBUG"), or ``default``."""
    name = os.environ.get(LOG_LEVEL_ENV, "").strip().upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def setup_logging(filename: str | Path | None = None) -> structlog.BoundLogger:
    """Set up JSON logging for the batch_planner package.

    Records carry the emitting thread, since large files are read on a worker
    pool, and any context bound with ``structlog.contextvars`` (the planner
    binds a run id). The first call wins; a ``filename`` passed after stderr
    logging was configured adds a file handler instead.

    Args:
        filename: Optional path to a log file. If None, logs are written to stderr.

    Returns:
        A structlog logger instance configured for the batch_planner package.
    """
    global _LOGGING_CONFIGURED  # noqa: PLW0603
    if _LOGGING_CONFIGURED:
        if filename:
            root = logging.getLogger()
            target = os.path.abspath(str(filename))  # noqa: PTH100
            if not any(isinstance(h, logging.FileHandler) and h.baseFilename == target for h in root.handlers):
                root.addHandler(logging.FileHandler(target, encoding="utf-8"))
        return structlog.get_logger("batch_planner")

    level = _level_from_env()
    handler: logging.Handler = (
        logging.FileHandler(str(filename), encoding="utf-8") if filename else logging.StreamHandler(sys.stderr)
    )
    logging.basicConfig(level=level, handlers=[handler], format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.CallsiteParameterAdder([structlog.processors.CallsiteParameter.THREAD_NAME]),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _LOGGING_CONFIGURED = True
    return structlog.get_logger("batch_planner")


logger = setup_logging()
