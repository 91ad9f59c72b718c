"""Structured logging for batch runs and CLI commands."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

# Client libraries that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "anthropic")


def _processors(json_output: bool) -> list[structlog.types.Processor]:
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        # One JSON object per line, tracebacks included as structured data
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    return processors


def configure_logging(*, json_output: bool = False, level: int = logging.INFO) -> None:
    """Configure structlog for batch runs.

    Logs go to stderr so command output on stdout stays machine-readable.

    Args:
        json_output: Emit JSON lines for scheduled runs instead of console output.
        level: Minimum level; client libraries are held at WARNING unless DEBUG.
    """
    structlog.configure(
        processors=_processors(json_output),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)


@contextmanager
def bound_run(run_id: int | None) -> Iterator[None]:
    """Attach run_id to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(run_id=run_id):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
