"""
Structured logging with correlation IDs and per-account context.

Usage:
    from gamesync.observability import setup_logging, get_logger, log_context

    # At startup:
    setup_logging()

    logger = get_logger(__name__)

    # Every record emitted inside the block carries account_id
    with log_context(account_id="76561197960287930"):
        logger.warning("Fetch failed")
"""
import json
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

# Context variable for request/job correlation ID
_correlation_id: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

# Additional context (account_id, job_id, ...) attached to every record
_log_context: ContextVar[Dict[str, Any]] = ContextVar("log_context", default={})

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName",
}


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: str) -> None:
    """Set correlation ID in context."""
    _correlation_id.set(correlation_id)


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())[:8]


class correlation_context:
    """Context manager for setting correlation ID."""

    def __init__(self, correlation_id: Optional[str] = None):
        self.correlation_id = correlation_id or generate_correlation_id()
        self.token = None

    def __enter__(self):
        self.token = _correlation_id.set(self.correlation_id)
        return self.correlation_id

    def __exit__(self, *args):
        _correlation_id.reset(self.token)


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the current log context."""
    return dict(_log_context.get())


@contextmanager
def log_context(**kwargs) -> Iterator[Dict[str, Any]]:
    """
    Bind extra fields to every log record emitted inside the block.

    Nested blocks merge; leaving a block restores the outer context.
    """
    merged = {**_log_context.get(), **kwargs}
    token = _log_context.set(merged)
    try:
        yield merged
    finally:
        _log_context.reset(token)


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras = dict(_log_context.get())
    for key, value in record.__dict__.items():
        if key not in _STANDARD_ATTRS and not key.startswith("_"):
            extras[key] = value
    return extras


class StructuredFormatter(logging.Formatter):
    """
    JSON log formatter.

    Outputs timestamp, level, logger, message, correlation_id (if set),
    bound log context and any `extra=` fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation_id = get_correlation_id()
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        log_entry.update(_record_extras(record))

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Human-readable log formatter with correlation ID.

    Format: TIMESTAMP - LEVEL - LOGGER [CORRELATION_ID] - MESSAGE | {extras}
    """

    def format(self, record: logging.LogRecord) -> str:
        correlation_id = get_correlation_id()
        correlation_str = f" [{correlation_id}]" if correlation_id else ""

        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        base_msg = f"{timestamp} - {record.levelname:8} - {record.name}{correlation_str} - {record.getMessage()}"

        extras = _record_extras(record)
        if extras:
            base_msg += f" | {extras}"

        if record.exc_info:
            base_msg += f"\n{self.formatException(record.exc_info)}"

        return base_msg


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    include_libs: bool = False
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, output JSON logs; otherwise human-readable
        include_libs: If True, also log from third-party libraries
    """
    formatter = StructuredFormatter() if json_format else HumanReadableFormatter()

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    if not include_libs:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a logger with the given name."""
    return logging.getLogger(name)


class Timer:
    """
    Context manager for timing operations.

    Usage:
        with Timer("steam_owned_games", logger) as t:
            response = await client.get(...)
        print(f"Request took {t.elapsed_ms}ms")
    """

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger
        self.start_time: float = 0
        self.end_time: float = 0
        self.elapsed_ms: float = 0

    def __enter__(self) -> "Timer":
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args):
        self.end_time = time.perf_counter()
        self.elapsed_ms = (self.end_time - self.start_time) * 1000

        if self.logger:
            level = logging.WARNING if self.elapsed_ms > 5000 else logging.DEBUG
            self.logger.log(
                level,
                f"{self.name} completed",
                extra={"duration_ms": round(self.elapsed_ms, 2)}
            )
