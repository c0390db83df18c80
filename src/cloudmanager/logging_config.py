"""
Logging Configuration for the Cloud Manager

Provides:
- Human readable console output by default
- JSON formatted logs for log shippers (Loki, ELK, etc.)
- Log level filtering via environment variable
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Optional

_RESERVED = (
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
)


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Output format:
    {
        "timestamp": "2025-12-17T19:30:00.000000Z",
        "level": "INFO",
        "logger": "cloudmanager.operation",
        "message": "Executing AddReplica ...",
        "extra": { ... }
    }
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        extra_fields = {
            key: value for key, value in record.__dict__.items() if key not in _RESERVED
        }
        if extra_fields:
            log_obj["extra"] = extra_fields

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_to_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for a command run.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON formatting (True) or the console format (False)
        log_to_file: Optional file path for log output

    Returns:
        Configured root logger
    """
    level = os.environ.get("CLOUDMANAGER_LOG_LEVEL", level).upper()
    json_format = os.environ.get("CLOUDMANAGER_LOG_JSON", str(json_format)).lower() == "true"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        file_handler = logging.FileHandler(log_to_file)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("kazoo").setLevel(logging.WARNING)

    return root_logger
