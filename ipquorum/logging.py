"""
Logging setup for ipquorum.

Every module logs through `structlog.get_logger()`; this module only decides
the level and where the rendered lines go (stderr, so `--json` output on
stdout stays machine readable).
"""

import logging
import sys

import structlog

LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def _stderr_logger(*args) -> structlog.PrintLogger:
    # looked up per logger so a redirected stderr is honoured
    return structlog.PrintLogger(file=sys.stderr)


def level_for(verbosity: int = 0, quiet: bool = False, default: str = "INFO") -> int:
    """Map -v counts (and --quiet) to a logging level."""
    if quiet:
        return logging.WARNING
    if verbosity >= 1:
        return logging.DEBUG
    return LEVELS.get(default.upper(), logging.INFO)


def configure_logging(
    verbosity: int = 0,
    quiet: bool = False,
    default: str = "INFO",
    colors: bool | None = None,
) -> int:
    """
    Install the console renderer on stderr.

    Args:
        verbosity: Number of -v flags
        quiet: Only warnings and errors
        default: Level name used without -v (e.g. from IPQUORUM_LOG_LEVEL)
        colors: Force colored output; autodetected from stderr when None

    Returns:
        The numeric level that was installed
    """
    level = level_for(verbosity, quiet, default)
    if colors is None:
        colors = sys.stderr.isatty()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=False),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )
    return level
