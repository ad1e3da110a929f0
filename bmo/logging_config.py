"""Logging setup: JSON records in production, readable lines in development."""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from .config import settings

CONTEXT_FIELDS = ("company_id", "user_id", "document_id", "request_id")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with tenant context when present."""

    def __init__(self, service_name: str = "bmo"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for local development."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        context = " ".join(
            f"{field}={getattr(record, field)}"
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        context = f" [{context}]" if context else ""
        line = f"{timestamp} | {record.levelname:8s} | {record.name}{context} | {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str | None = None,
    log_format: str | None = None,
    log_file: str | None = None,
) -> logging.Logger:
    """Configure the root logger from ``settings.logging``.

    Args:
        level: Overrides LOG_LEVEL
        log_format: ``json`` or ``text``; overrides LOG_FORMAT
        log_file: Optional rotating log file; overrides LOG_FILE

    Returns:
        The root logger
    """
    level = (level or settings.logging.level).upper()
    log_format = (log_format or settings.logging.format).lower()
    log_file = log_file or settings.logging.file

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    if log_format == "json":
        console_handler.setFormatter(JSONFormatter(settings.app_name))
    else:
        console_handler.setFormatter(TextFormatter())
    root_logger.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=20 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(JSONFormatter(settings.app_name))
        root_logger.addHandler(file_handler)

    # Outbound HTTP clients are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger
