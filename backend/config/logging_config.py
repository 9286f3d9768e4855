"""Structured logging for the matching engine. File logs are JSON lines under ./tmp/."""
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

import structlog

LOG_DIR = Path("./tmp")


def _processors(json_output: bool) -> List[Any]:
    chain: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        chain.append(structlog.processors.JSONRenderer())
    else:
        chain.append(structlog.dev.ConsoleRenderer())
    return chain


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure stdlib logging and structlog together.

    Console output is human readable. When log_file is given, output switches
    to JSON and is also written to ./tmp/<log_file>.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Optional log filename
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        LOG_DIR.mkdir(exist_ok=True)
        handlers.append(logging.FileHandler(LOG_DIR / log_file))
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)

    structlog.configure(
        processors=_processors(json_output=bool(log_file)),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def log_context(**values: Any):
    """Bind values (patient_id, nct_id) to every log line emitted inside the block."""
    return structlog.contextvars.bound_contextvars(**values)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
