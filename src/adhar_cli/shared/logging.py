"""Logging configuration for adhar-cli.

Configures structlog with human-readable output for interactive runs and
JSON output when logs are shipped somewhere else (CI, --log-json).
"""

import logging
import sys
from pathlib import Path

import structlog

# -v count -> level name
VERBOSITY_LEVELS = ("warning", "info", "debug")


def level_for_verbosity(verbose: int) -> str:
    """Map the number of -v flags to a log level name.

    Args:
        verbose: Count of -v flags given on the command line

    Returns:
        Level name understood by configure_logging
    """
    index = max(0, min(verbose, len(VERBOSITY_LEVELS) - 1))
    return VERBOSITY_LEVELS[index]


def configure_logging(
    level: str = "warning",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Configure logging for the application.

    Called once from the root command. Configures both standard logging
    (used by subprocess-heavy modules) and structlog.

    Args:
        level: Log level (debug, info, warning, error, critical)
        log_file: Optional path to log file; stderr when omitted
        json_output: If True, render events as JSON lines
    """
    log_level = getattr(logging, level.upper(), logging.WARNING)

    handlers: list[logging.Handler] = []
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(str(log_file))
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)
    handlers.append(handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        format="%(message)s",
        force=True,
    )

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not log_file))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
