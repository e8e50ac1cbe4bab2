"""
Hospital Wait Monitor - Logging Configuration

Provides structured JSON logging with file rotation, sensitive data censoring,
and contextual information. Designed for unattended scraping deployments.

Features:
    - JSON structured logging for easy parsing
    - Automatic file rotation by size
    - Sensitive data censoring (proxy credentials, URL userinfo, tokens)
    - Contextual extras (correlation IDs, target URLs, job IDs)
    - Console and file handlers

Correlation IDs are not held in global state. Callers pass them explicitly
through ``extra``, usually via ``TraceContext.log_extra()``.

Usage:
    from config.logging import setup_logging, get_logger

    # Initialize at application start
    setup_logging()

    # Get a logger for a module
    logger = get_logger(__name__)
    logger.info("Scrape completed", extra={"correlation_id": "abc123"})
"""

import json
import logging
import logging.handlers
import re
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from config.settings import get_settings


# =============================================================================
# Sensitive Data Patterns
# =============================================================================

# Patterns to censor in log output
SENSITIVE_PATTERNS = [
    (re.compile(r'(\w+://[^:/\s@"]+:)[^@\s"/]+(@)'), r'\1[REDACTED]\2'),  # user:pass@host URLs
    (re.compile(r'(password["\']?\s*[:=]\s*["\']?)[^"\'&\s,}]+', re.I), r'\1[REDACTED]'),
    (re.compile(r'(api_key["\']?\s*[:=]\s*["\']?)[^"\'&\s,}]+', re.I), r'\1[REDACTED]'),
    (re.compile(r'(secret["\']?\s*[:=]\s*["\']?)[^"\'&\s,}]+', re.I), r'\1[REDACTED]'),
    (re.compile(r'(token["\']?\s*[:=]\s*["\']?)[^"\'&\s,}]+', re.I), r'\1[REDACTED]'),
    (re.compile(r'(Bearer\s+)[A-Za-z0-9._-]+', re.I), r'\1[REDACTED]'),
]


def censor_sensitive_data(text: str) -> str:
    """
    Remove sensitive data from text using pattern matching.

    Args:
        text: Text that may contain sensitive data

    Returns:
        Text with sensitive data redacted
    """
    if not isinstance(text, str):
        return text

    result = text
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    return result


# =============================================================================
# Custom Formatter
# =============================================================================

class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured logging.

    Outputs each log record as a single JSON line with:
        - timestamp (ISO 8601)
        - level
        - logger name
        - message
        - extra fields from the record
        - exception info if present
    """

    # Fields that are part of LogRecord but shouldn't be in extras
    RESERVED_ATTRS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "taskName", "message",
    }

    def __init__(self, include_extras: bool = True, censor_sensitive: bool = True):
        """
        Initialize the formatter.

        Args:
            include_extras: Include extra fields from the log record
            censor_sensitive: Censor sensitive data in output
        """
        super().__init__()
        self.include_extras = include_extras
        self.censor_sensitive = censor_sensitive

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Promote the correlation id so log shippers can index it
        correlation_id = getattr(record, "correlation_id", None)
        if correlation_id:
            log_entry["correlation_id"] = correlation_id

        if record.levelno >= logging.WARNING:
            log_entry["location"] = {
                "file": record.filename,
                "line": record.lineno,
                "function": record.funcName,
            }

        if self.include_extras:
            extras = {}
            for key, value in record.__dict__.items():
                if key in self.RESERVED_ATTRS or key.startswith("_"):
                    continue
                if key == "correlation_id":
                    continue
                try:
                    json.dumps(value)
                    extras[key] = value
                except (TypeError, ValueError):
                    extras[key] = str(value)

            if extras:
                log_entry["extra"] = extras

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info),
            }

        json_str = json.dumps(log_entry, default=str, ensure_ascii=False)

        if self.censor_sensitive:
            json_str = censor_sensitive_data(json_str)

        return json_str


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter with colors.

    Format: TIMESTAMP | LEVEL | LOGGER | MESSAGE [extras]
    """

    # ANSI color codes
    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[41m",  # Red background
    }
    RESET = "\033[0m"

    RESERVED_ATTRS = JSONFormatter.RESERVED_ATTRS

    def __init__(self, use_colors: bool = True, censor_sensitive: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()
        self.censor_sensitive = censor_sensitive

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record for console output."""
        timestamp = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).strftime("%Y-%m-%d %H:%M:%S")

        level = record.levelname
        if self.use_colors:
            color = self.COLORS.get(level, "")
            level = f"{color}{level:8}{self.RESET}"
        else:
            level = f"{level:8}"

        logger_name = record.name
        if len(logger_name) > 25:
            logger_name = "..." + logger_name[-22:]

        message = record.getMessage()

        extras = []
        for key, value in record.__dict__.items():
            if key not in self.RESERVED_ATTRS and not key.startswith("_"):
                extras.append(f"{key}={value}")

        extra_str = ""
        if extras:
            extra_str = f" [{', '.join(extras)}]"

        output = f"{timestamp} | {level} | {logger_name:25} | {message}{extra_str}"

        if record.exc_info and record.exc_info[0] is not None:
            output += "\n" + "".join(traceback.format_exception(*record.exc_info))

        if self.censor_sensitive:
            output = censor_sensitive_data(output)

        return output


# =============================================================================
# Log Setup Functions
# =============================================================================

def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """
    Configure application logging.

    Sets up both console and file handlers with appropriate formatters.
    Should be called once at application startup.

    Args:
        log_level: Override settings log level
        log_file: Override settings log file path
        log_format: Override settings log format (json or text)
    """
    settings = get_settings()

    level = getattr(logging, (log_level or settings.log_level).upper())
    file_path = log_file or settings.log_file
    format_type = (log_format or settings.log_format).lower()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)

    if format_type == "json":
        console_handler.setFormatter(JSONFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter())

    root_logger.addHandler(console_handler)

    if file_path:
        file_path_obj = Path(file_path)

        if not file_path_obj.is_absolute():
            file_path_obj = settings.project_root / file_path_obj

        file_path_obj.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            file_path_obj,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)

        # Always use JSON for file logging (easier to parse)
        file_handler.setFormatter(JSONFormatter())

        root_logger.addHandler(file_handler)

    # Configure third-party loggers to be less verbose
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("playwright").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.INFO)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.database_echo else logging.WARNING
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logger = get_logger(__name__)
    logger.info(
        "Logging initialized",
        extra={
            "level": logging.getLevelName(level),
            "file": str(file_path) if file_path else None,
            "format": format_type,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Args:
        name: Logger name, typically __name__

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "setup_logging",
    "get_logger",
    "JSONFormatter",
    "ConsoleFormatter",
    "censor_sensitive_data",
]
