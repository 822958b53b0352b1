"""
Structured JSON logging for lifecycle observability.

Provides structured logging with trace IDs for correlating every log line a
sweep emits, plus a context manager that times a sweep and a progress
tracker for long enumerations.
"""

import json
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone

# Context variables for trace correlation
trace_id_var: ContextVar[str | None] = ContextVar("trace_id", default=None)
sweep_var: ContextVar[str | None] = ContextVar("sweep", default=None)

# Extra record attributes copied into the JSON payload
_EXTRA_FIELDS = (
    "event",
    "duration_ms",
    "items_processed",
    "items_failed",
    "listing_id",
    "user_id",
    "verdict",
    "reason",
    "tier",
    "status_filter",
    "initiated_by",
    "error_kind",
)


# -----------------------------------------------------------------------------
# JSON Formatter
# -----------------------------------------------------------------------------


class JSONFormatter(logging.Formatter):
    """
    Format log records as single-line JSON.

    Output format:
    {"timestamp": "...", "level": "INFO", "message": "...", "trace_id": "...", ...}
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        trace_id = trace_id_var.get()
        if trace_id:
            log_data["trace_id"] = trace_id

        sweep = sweep_var.get()
        if sweep:
            log_data["sweep"] = sweep

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        return json.dumps(log_data, default=str)


def configure_logging(json_format: bool = True, level: str = "INFO") -> None:
    """
    Configure logging for production or local development.

    Args:
        json_format: If True, use JSON format. If False, use human-readable format.
        level: Log level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))

    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)


# -----------------------------------------------------------------------------
# Context Managers
# -----------------------------------------------------------------------------


@contextmanager
def log_sweep(name: str, trace_id: str | None = None, **fields):
    """
    Context manager for sweep-level logging.

    Sets the trace/sweep context for every log line emitted inside the block
    and logs start and end with duration.

    Usage:
        with log_sweep("archive_expired", status_filter="active") as trace_id:
            ...
    """
    trace_id = trace_id or uuid.uuid4().hex[:16]
    trace_token = trace_id_var.set(trace_id)
    sweep_token = sweep_var.set(name)

    start_time = time.time()
    logger = logging.getLogger("lifecycle.sweep")

    logger.info(f"Sweep {name} started", extra={"event": "sweep_start", **fields})

    try:
        yield trace_id
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Sweep {name} completed",
            extra={"event": "sweep_complete", "duration_ms": duration_ms, **fields},
        )
    except Exception as e:
        duration_ms = int((time.time() - start_time) * 1000)
        logger.error(
            f"Sweep {name} failed: {e}",
            extra={"event": "sweep_failed", "duration_ms": duration_ms, **fields},
            exc_info=True,
        )
        raise
    finally:
        sweep_var.reset(sweep_token)
        trace_id_var.reset(trace_token)


# -----------------------------------------------------------------------------
# Progress Tracker
# -----------------------------------------------------------------------------


@dataclass
class ProgressTracker:
    """
    Track progress for batch operations with periodic logging.

    The total is not known up front for paged sweeps, so progress is logged
    every `log_every` items rather than as a percentage.

    Usage:
        tracker = ProgressTracker(stage="archive_expired", log_every=50)
        for listing in listings:
            process(listing)
            tracker.increment()
        tracker.finish()
    """

    stage: str
    log_every: int = 50

    processed: int = field(default=0, init=False)
    succeeded: int = field(default=0, init=False)
    failed: int = field(default=0, init=False)
    _start_time: float = field(default_factory=time.time, init=False)
    _logger: logging.Logger = field(init=False)

    def __post_init__(self):
        self._logger = logging.getLogger("lifecycle.progress")

    def increment(self, success: bool = True) -> None:
        """Increment progress counter."""
        self.processed += 1
        if success:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.log_every and self.processed % self.log_every == 0:
            self._log_progress()

    def _log_progress(self) -> None:
        elapsed = time.time() - self._start_time
        rate = self.processed / elapsed if elapsed > 0 else 0

        self._logger.info(
            f"{self.stage}: {self.processed} processed "
            f"({self.succeeded} ok, {self.failed} failed) [{rate:.1f}/s]",
            extra={
                "event": "progress_update",
                "items_processed": self.processed,
                "items_failed": self.failed,
            },
        )

    def finish(self) -> dict:
        """Finalize progress tracking and return summary."""
        elapsed = time.time() - self._start_time

        self._logger.info(
            f"{self.stage}: Completed {self.processed} "
            f"({self.succeeded} ok, {self.failed} failed) in {elapsed:.1f}s",
            extra={
                "event": "progress_complete",
                "items_processed": self.processed,
                "items_failed": self.failed,
                "duration_ms": int(elapsed * 1000),
            },
        )

        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "duration_seconds": round(elapsed, 1),
        }
