"""
Logging configuration for the HTTP test harness.

This module provides structured logging with optional rotation to disk,
detailed console formatting, and quieter levels for the HTTP libraries
the harness drives.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from datetime import datetime, timezone
from typing import Any
import json

from .config import log_settings


class StructuredFormatter(logging.Formatter):
    """JSON structured formatter for machine-readable logs."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        # Add extra fields if present
        for key in ["method", "path", "status", "host", "port", "duration_ms"]:
            if hasattr(record, key):
                log_entry[key] = getattr(record, key)

        # Add exception info if present
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter with colors for console output."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if sys.stderr.isatty():
            color = self.COLORS.get(levelname, self.COLORS["RESET"])
            levelname = f"{color}{levelname}{self.COLORS['RESET']}"

        # Format: timestamp [LEVEL] logger.module.function:line - message
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        location = f"{record.module}.{record.funcName}:{record.lineno}"

        formatted = f"{timestamp} [{levelname}] {record.name}.{location} - {record.getMessage()}"

        # Add exception info if present
        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(
    log_level: str | None = None,
    log_dir: str | None = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Setup logging for the harness logger tree.

    Only the "http_test_harness" logger is configured so the host test
    runner keeps control of the root logger.

    Args:
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL),
            defaults to HTTP_HARNESS_LOG_LEVEL or WARNING
        log_dir: Directory for a rotating JSONL log, defaults to
            HTTP_HARNESS_LOG_DIR; console only when neither is set
        max_bytes: Maximum size of the log file before rotation
        backup_count: Number of backup log files to keep

    Returns:
        The configured harness logger
    """
    env_level, env_dir = log_settings()
    log_level = log_level or env_level
    log_dir = log_dir or env_dir
    numeric_level = getattr(logging, log_level.upper(), logging.WARNING)

    harness_logger = logging.getLogger("http_test_harness")
    harness_logger.setLevel(logging.DEBUG)  # Capture all levels, filter per handler

    # Remove existing handlers to avoid duplicates
    harness_logger.handlers.clear()

    # === Console Handler: Human-readable (stderr) ===
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(HumanReadableFormatter())
    harness_logger.addHandler(console_handler)

    # === File Handler: All logs (JSON structured) ===
    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        all_handler = logging.handlers.RotatingFileHandler(
            log_path / "http_harness.jsonl",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        all_handler.setLevel(logging.DEBUG)
        all_handler.setFormatter(StructuredFormatter())
        harness_logger.addHandler(all_handler)

    # Set specific log levels for noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    harness_logger.debug(f"Logging initialized - Level: {log_level}")
    return harness_logger


def log_request(
    logger: logging.Logger, method: str, url: str, body: bytes | None = None
) -> None:
    size = len(body) if body else 0
    logger.debug(
        f"Request: {method} {url} ({size} bytes)",
        extra={"method": method, "path": url},
    )


def log_response(
    logger: logging.Logger,
    method: str,
    path: str,
    status: int,
    duration_ms: float,
    **extra: Any,
) -> None:
    logger.debug(
        f"Response: {method} {path} -> {status} in {duration_ms:.2f}ms",
        extra={
            "method": method,
            "path": path,
            "status": status,
            "duration_ms": round(duration_ms, 2),
            **extra,
        },
    )
