"""
Structured JSON logging for the Rego Policy Agent.
All modules use get_logger() — no print().
"""
import logging
import json
import sys
from datetime import datetime, timezone

# Attributes every LogRecord carries; anything else came in through `extra={}`.
_STANDARD_KEYS = {
    "name", "msg", "args", "created", "relativeCreated",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "pathname", "filename", "module", "levelno", "levelname",
    "message", "msecs", "thread", "threadName", "process",
    "processName", "taskName",
}


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Structured extras (event, provider, model, operation, strategy, ...)
        for key, value in record.__dict__.items():
            if key in _STANDARD_KEYS or key in log_entry:
                continue
            try:
                json.dumps(value)
            except (TypeError, ValueError):
                value = repr(value)
            log_entry[key] = value

        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


_initialized = False


def setup_logging(level: str = "INFO") -> None:
    """Initialize structured logging for the application. Call once at startup."""
    global _initialized
    if _initialized:
        return

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root.addHandler(handler)

    # Suppress noisy third-party loggers
    for noisy in ("uvicorn.access", "httpcore", "httpx", "openai", "botocore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """Get a named logger. Use __name__ as convention."""
    return logging.getLogger(name)
