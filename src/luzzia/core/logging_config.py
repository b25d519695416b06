"""
Structured Logging Configuration
=================================

Centralized logging configuration for the ingestion service.
JSON structured logs in production, colored human-readable logs otherwise.

Features:
- JSON structured logs for production
- Color-coded console logs for development
- Optional JSON file output
- Performance and business event logging helpers
"""

import logging
import sys
from pathlib import Path
from typing import Optional
import json
from datetime import datetime, timezone

from luzzia.core.config import settings


# =================================================================
# LOG FORMATTERS
# =================================================================

class StructuredFormatter(logging.Formatter):
    """
    JSON structured logging formatter for production.

    Outputs logs in JSON format with standard fields:
    - timestamp: ISO 8601 format
    - level: Log level (INFO, ERROR, etc.)
    - logger: Logger name
    - message: Log message
    - module / function / line: call site
    - exception: formatted traceback (if any)
    - any keys passed through ``extra={"extra_data": {...}}``
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Color-coded console formatter for development."""

    COLORS = {
        "DEBUG": "\033[37m",      # Gray
        "INFO": "\033[32m",       # Green
        "WARNING": "\033[33m",    # Yellow
        "ERROR": "\033[31m",      # Red
        "CRITICAL": "\033[41m",   # Red background
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = (
                f"{self.COLORS[levelname]}{levelname:8}{self.RESET}"
            )

        formatted = super().format(record)

        # Reset levelname for other handlers
        record.levelname = levelname

        return formatted


# =================================================================
# LOG HANDLERS
# =================================================================

def get_console_handler() -> logging.StreamHandler:
    """Console handler, JSON in production and colored otherwise."""
    handler = logging.StreamHandler(sys.stdout)

    if settings.ENVIRONMENT == "production":
        formatter = StructuredFormatter()
    else:
        formatter = ColoredFormatter(
            fmt="%(asctime)s - %(name)-30s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    handler.setFormatter(formatter)
    return handler


def get_file_handler(log_file: Path) -> Optional[logging.FileHandler]:
    """
    Get file handler with JSON formatter.

    Returns None when the log directory cannot be created, which disables
    file logging without aborting startup.
    """
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logging.getLogger(__name__).warning(
            f"⚠️  Could not create log directory: {e}. File logging disabled."
        )
        return None

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.setFormatter(StructuredFormatter())

    return handler


# =================================================================
# LOGGER SETUP
# =================================================================

def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True
) -> None:
    """
    Configure logging for the entire application.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
                   Defaults to settings.LOG_LEVEL
        log_file: Path to log file. Defaults to settings.LOG_FILE
        enable_file_logging: Whether to enable file logging
    """
    level = log_level or settings.LOG_LEVEL
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    root_logger.addHandler(get_console_handler())

    log_file = log_file or settings.LOG_FILE
    if enable_file_logging and log_file is not None:
        file_handler = get_file_handler(Path(log_file))
        if file_handler:
            root_logger.addHandler(file_handler)

    # Reduce third-party noise
    for noisy in ("httpx", "httpcore", "apscheduler", "influxdb_client"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.info(f"🔧 Logging configured: level={level}, environment={settings.ENVIRONMENT}")
    if enable_file_logging and log_file is not None:
        logger.info(f"📝 File logging enabled: {log_file}")


# =================================================================
# PERFORMANCE LOGGING
# =================================================================

class PerformanceLogger:
    """
    Context manager for performance logging.

    Example:
        >>> with PerformanceLogger("save_prices"):
        ...     await repository.save_prices(records)
    """

    def __init__(self, operation_name: str, logger_name: Optional[str] = None):
        self.operation_name = operation_name
        self.logger = logging.getLogger(logger_name or __name__)
        self.start_time = None
        self.elapsed = 0.0

    def __enter__(self):
        self.start_time = datetime.now()
        self.logger.debug(f"⏱️  Started: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = (datetime.now() - self.start_time).total_seconds()

        if exc_type:
            self.logger.error(
                f"❌ Failed: {self.operation_name} ({self.elapsed:.2f}s)",
                exc_info=(exc_type, exc_val, exc_tb)
            )
        else:
            self.logger.info(
                f"✅ Completed: {self.operation_name} ({self.elapsed:.2f}s)"
            )


# =================================================================
# UTILITY FUNCTIONS
# =================================================================

def log_api_call(
    logger: logging.Logger,
    method: str,
    url: str,
    status_code: int,
    elapsed_ms: float,
    **extra_data
):
    """
    Log external API call with structured data.

    Example:
        >>> log_api_call(
        ...     logger,
        ...     method="GET",
        ...     url="https://api.esios.ree.es/archives/70/download_json",
        ...     status_code=200,
        ...     elapsed_ms=234.5,
        ...     provider="ree",
        ... )
    """
    log_data = {
        "api_call": {
            "method": method,
            "url": url,
            "status_code": status_code,
            "elapsed_ms": round(elapsed_ms, 1),
            **extra_data
        }
    }

    level = logging.INFO if 0 < status_code < 400 else logging.ERROR
    logger.log(
        level,
        f"API Call: {method} {url} [{status_code}] ({elapsed_ms:.1f}ms)",
        extra={"extra_data": log_data}
    )


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **data):
    """
    Log a business event (ingestion, fallback, circuit transition...).

    Example:
        >>> log_event(logger, "prices_saved", saved=24, failed=0)
    """
    logger.log(
        level,
        f"📊 Event: {event}",
        extra={"extra_data": {"event": event, "data": data}}
    )
