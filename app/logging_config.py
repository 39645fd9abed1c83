"""Logging setup for QuizDeck.

Production writes one JSON object per line; development writes coloured
console lines. Both carry the caller's email and the question or activity
record a message is about, passed through ``extra=log_context(...)``.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from app.config import settings

# LogRecord attribute -> short label used on console lines
CONTEXT_FIELDS = {
    "user_email": "user",
    "question_id": "question",
    "activity_id": "activity",
    "request_id": "request",
}

# Loggers that drown out application messages below WARNING
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "httpx", "authlib")

# Marks the handler installed by setup_logging so a second call replaces it
HANDLER_NAME = "quizdeck"


def log_context(user=None, **fields) -> Dict[str, Any]:
    """Build the ``extra`` mapping for a log call.

    ``user`` is anything with an ``email`` attribute (usually a UserContext).
    Fields whose value is None are left out, so the JSON output never
    carries ``"activity_id": null`` for records that do not exist yet.

    Example:
        >>> logger.info("Deleted activity", extra=log_context(user, activity_id=record_id))
    """
    context = {}
    if user is not None:
        context["user_email"] = user.email
    for name, value in fields.items():
        if name not in CONTEXT_FIELDS:
            raise ValueError(f"Unknown log context field: {name}")
        if value is not None:
            context[name] = value
    return context


def record_context(record: logging.LogRecord) -> Dict[str, Any]:
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record, context fields at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc)
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.lineno}",
        }
        log_data.update(record_context(record))

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class ColoredFormatter(logging.Formatter):
    """Console formatter: coloured level name, context appended as ``[user=...]``."""

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",      # Cyan
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[35m",   # Magenta
    }
    RESET = "\033[0m"

    def __init__(self, fmt: str = None, datefmt: str = None, use_color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        if self.use_color and record.levelname in self.COLORS:
            # Colour the output line only; the record is left unchanged
            line = line.replace(
                record.levelname,
                f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}",
                1,
            )

        context = record_context(record)
        if context:
            pairs = " ".join(f"{CONTEXT_FIELDS[name]}={value}" for name, value in context.items())
            line = f"{line} [{pairs}]"
        return line


def build_handler(json_output: bool, stream=None) -> logging.Handler:
    handler = logging.StreamHandler(stream or sys.stdout)
    handler.set_name(HANDLER_NAME)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ColoredFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
            use_color=(stream or sys.stdout).isatty(),
        ))
    return handler


def setup_logging(log_level: Optional[str] = None, json_output: Optional[bool] = None, stream=None) -> None:
    """Configure the root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Defaults to INFO
                   in production and DEBUG elsewhere.
        json_output: Force JSON (True) or console (False) output. Defaults
                     to JSON in production.
        stream: Where to write, stdout by default.

    Calling it again replaces the handler it installed earlier instead of
    adding a second one.
    """
    if log_level is None:
        log_level = "INFO" if settings.is_production else "DEBUG"
    if json_output is None:
        json_output = settings.is_production

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(build_handler(json_output, stream))
    root_logger.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={log_level.upper()}, "
        f"environment={settings.ENVIRONMENT}, "
        f"format={'JSON' if json_output else 'console'}"
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
