from __future__ import annotations

import logging
import os
import sys

from taskcheck.core import config

LOGGER_NAME = "taskcheck"
DEFAULT_LEVEL = "WARNING"


def resolve_level(level: str | int | None = None) -> int:
    """Pick the log level: explicit value, `TASKCHECK_LOG_LEVEL`, config `log.level`, then WARNING."""
    if level is None:
        level = os.environ.get("TASKCHECK_LOG_LEVEL")
    from_config = False
    if level is None:
        level = config.log_level()
        from_config = level is not None
    if level is None:
        level = DEFAULT_LEVEL
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        if from_config:
            raise config.ConfigError(f"log.level is not a log level in {config.config_path()}: {level!r}")
        raise ValueError(f"Unknown log level: {level!r}")
    return value


def setup_logging(level: str | int | None = None) -> logging.Logger:
    # stdout carries JSON envelopes and task output, so logs go to stderr.
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(resolve_level(level))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    logger.propagate = False
    return logger
