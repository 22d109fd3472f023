"""
Diskwright structured logging.

Every mutating step (image creation, device binding, partition writes,
clone attempts) is logged with keyword context so a run can be audited
after the fact. Log lines carry the session id through structlog's
context variables.
"""

from __future__ import annotations

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, WrappedLogger

if TYPE_CHECKING:
    from diskwright.core.config import LoggingConfig


# stderr from dd, ddrescue or mkfs can run to megabytes
MAX_TOOL_OUTPUT_CHARS = 2000
TOOL_OUTPUT_KEYS = ("stderr", "stdout", "output")

_configured = False


def normalize_values(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Render paths as strings and cut captured tool output down to its tail."""
    for key, value in event_dict.items():
        if isinstance(value, Path):
            event_dict[key] = str(value)
        elif key in TOOL_OUTPUT_KEYS and isinstance(value, str):
            if len(value) > MAX_TOOL_OUTPUT_CHARS:
                event_dict[key] = "..." + value[-MAX_TOOL_OUTPUT_CHARS:]
    return event_dict


def setup_logging(config: LoggingConfig, verbose: bool = False) -> None:
    """Configure stdlib handlers and structlog processors once per process."""
    global _configured

    if _configured:
        return

    handlers: list[logging.Handler] = []

    if config.console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG if verbose else getattr(logging, config.level))
        handlers.append(console_handler)

    if config.file_enabled:
        config.log_directory.mkdir(parents=True, exist_ok=True)
        log_file = config.log_directory / f"diskwright_{datetime.now():%Y%m%d}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, format="%(message)s")

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        normalize_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if config.json_format:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name or "diskwright")


def bind_session(session_id: str, dry_run: bool) -> None:
    """Attach the session to every subsequent log line in this context."""
    structlog.contextvars.bind_contextvars(session_id=session_id, dry_run=dry_run)


def unbind_session() -> None:
    structlog.contextvars.unbind_contextvars("session_id", "dry_run")


class OperationLogger:
    """
    Logs the start, completion or failure of a multi-step operation.

    Steps recorded with :meth:`step` are numbered and included in the
    failure record, so a log alone shows how far a destructive sequence got.
    """

    def __init__(
        self,
        operation: str,
        logger: structlog.stdlib.BoundLogger | None = None,
        **context: Any,
    ):
        self.operation = operation
        self.logger = (logger or get_logger()).bind(operation=operation, **context)
        self.steps: list[str] = []
        self._started: float | None = None

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started if self._started is not None else 0.0

    def step(self, name: str, **context: Any) -> None:
        self.steps.append(name)
        self.logger.debug("Step completed", step=len(self.steps), name=name, **context)

    def __enter__(self) -> OperationLogger:
        self._started = time.monotonic()
        self.logger.info(f"Starting {self.operation}")
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        if exc_type is None:
            self.logger.info(
                f"Completed {self.operation}",
                duration_seconds=round(self.elapsed, 3),
                steps=len(self.steps),
            )
            return

        self.logger.error(
            f"Failed {self.operation}",
            duration_seconds=round(self.elapsed, 3),
            error_type=exc_type.__name__,
            error=str(exc_val),
            completed_steps=self.steps,
        )
