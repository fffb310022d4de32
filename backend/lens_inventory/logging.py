"""structlog setup for the API process and library callers.

Development gets the colored console renderer; every other environment gets
JSON lines. When LOG_FILE is set, lines are mirrored to that file as well.
"""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from lens_inventory.config import settings


class _MirroredStdout:
    """File-like sink that writes to stdout and, when possible, a log file.

    A log file that cannot be opened or written is dropped after a single
    warning on stderr; stdout logging keeps going.
    """

    def __init__(self, file_path: str) -> None:
        self._path = file_path
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            self._warn(f"could not open log file {file_path!r}: {exc}")

    def _warn(self, message: str) -> None:
        # structlog is not usable from inside its own sink
        print(f"WARNING: {message}; logging to stdout only", file=sys.stderr)

    def _disable(self, action: str) -> None:
        self._file = None
        self._warn(f"log file {self._path!r} {action} failed")

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._disable("write")

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is None:
            return
        try:
            self._file.flush()
        except (OSError, ValueError):
            self._disable("flush")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: str | None = None, *, json_output: bool | None = None) -> None:
    """Configure structlog processors, level filtering and the output sink.

    ``level`` and ``json_output`` override the values taken from settings.
    """
    if json_output is None:
        json_output = settings.environment != "development"

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    logger_factory: structlog.types.WrappedLogger
    if settings.log_file:
        logger_factory = structlog.PrintLoggerFactory(file=_MirroredStdout(settings.log_file))  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            _resolve_level(level or settings.log_level)
        ),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
