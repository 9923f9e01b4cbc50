"""Logging configuration using structlog with cycle statistics."""

import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

from dessharvest.config.settings import Settings


@dataclass
class CycleStats:
    """Statistics for one fetch cycle (one device, one data category)."""

    category: str
    device_pn: str | None = None
    operations_ok: int = 0
    operations_failed: int = 0
    records_written: int = 0
    errors: list[str] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: datetime | None = None
    duration_seconds: float = 0.0

    def finish(self) -> None:
        """Mark the cycle as complete and calculate duration."""
        self.end_time = datetime.now(timezone.utc)
        self.duration_seconds = (self.end_time - self.start_time).total_seconds()

    def record(self, success: bool, records: int = 0, error: str | None = None) -> None:
        """Record the result of one operation in the cycle."""
        if success:
            self.operations_ok += 1
            self.records_written += records
        else:
            self.operations_failed += 1
            if error:
                self.errors.append(error)

    @property
    def operations_total(self) -> int:
        return self.operations_ok + self.operations_failed

    @property
    def success(self) -> bool:
        """A cycle succeeds when at least one operation succeeded."""
        return self.operations_ok > 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "category": self.category,
            "device_pn": self.device_pn,
            "operations_ok": self.operations_ok,
            "operations_total": self.operations_total,
            "records_written": self.records_written,
            "error_count": len(self.errors),
            "duration_seconds": self.duration_seconds,
            "success": self.success,
        }

class OperationTimer:
    """Times a block of work and logs its outcome with the elapsed seconds."""

    def __init__(self, operation_name: str, logger: Any = None, **context: Any) -> None:
        self.operation_name = operation_name
        self.log = (logger or structlog.get_logger()).bind(
            operation=operation_name, **context
        )
        self._started: float | None = None
        self._stopped: float | None = None

    def __enter__(self) -> "OperationTimer":
        self._started = time.monotonic()
        self.log.debug(f"Starting {self.operation_name}")
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._stopped = time.monotonic()

        if exc_type is None:
            self.log.info(f"Completed {self.operation_name}", duration_seconds=self.duration)
        else:
            self.log.error(
                f"Failed {self.operation_name}",
                duration_seconds=self.duration,
                error=str(exc_val),
            )

    @property
    def duration(self) -> float:
        """Elapsed seconds, up to now while the block is still running."""
        if self._started is None:
            return 0.0
        return (self._stopped or time.monotonic()) - self._started


# Event keys whose values are credentials or signatures
SENSITIVE_KEYS = frozenset({"password", "company_key", "secret", "sign", "token"})
REDACTED = "***"


def redact_secrets(
    logger: Any, method_name: str, event_dict: structlog.types.EventDict
) -> structlog.types.EventDict:
    """Mask credential values so they never reach a log sink."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = REDACTED
    return event_dict


def _handler(
    handler: logging.Handler,
    renderers: list[structlog.types.Processor],
    pre_chain: list[structlog.types.Processor],
    level: int,
) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *renderers,
            ],
        )
    )
    return handler


def configure_logging(settings: Settings) -> None:
    """Configure structlog on top of the standard logging handlers.

    Events go to stdout (colored on a TTY, JSON otherwise) and, when
    ``log_file`` is set, to a size-rotated JSON file.

    Args:
        settings: Application settings containing logging configuration.
    """
    log_level = getattr(logging, settings.log_level)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]
    json_renderers: list[structlog.types.Processor] = [
        structlog.processors.dict_tracebacks,
        structlog.processors.JSONRenderer(),
    ]

    if sys.stdout.isatty():
        console_renderers = [structlog.dev.ConsoleRenderer(colors=True)]
    else:
        console_renderers = json_renderers

    handlers = [
        _handler(logging.StreamHandler(sys.stdout), console_renderers, shared_processors, log_level)
    ]

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        rotating = RotatingFileHandler(
            filename=log_path,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        handlers.append(_handler(rotating, json_renderers, shared_processors, log_level))

    root = logging.getLogger()
    for existing in root.handlers[:]:
        root.removeHandler(existing)
        existing.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(log_level)

    # httpx logs every request URL at INFO, and our URLs carry signatures
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
