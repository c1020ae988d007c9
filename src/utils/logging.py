"""
Logging utilities for Lambda functions.

Provides structured JSON logging with correlation IDs for tracing requests
across API Gateway handlers and queue consumers.
"""

import json
import logging
import os
import sys
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVELS = {"DEBUG": 10, "INFO": 20, "WARNING": 30, "ERROR": 40}


class StructuredLogger:
    """
    JSON logger for Lambda functions with correlation ID support.

    Example:
        logger = StructuredLogger(__name__)
        logger.info("Reserved upload token", event_id="party-2024", file_name="a.jpg")
    """

    def __init__(self, name: str, correlation_id: Optional[str] = None) -> None:
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(os.getenv("LOG_LEVEL", "INFO"))
        self.correlation_id = correlation_id or str(uuid.uuid4())

    def _enabled(self, level: str) -> bool:
        threshold = _LEVELS.get(os.getenv("LOG_LEVEL", "INFO").upper(), 20)
        return _LEVELS[level] >= threshold

    def _log(self, level: str, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Internal method to emit structured JSON logs."""
        if not self._enabled(level):
            return

        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "logger": self.name,
            "message": message,
            "correlationId": self.correlation_id,
            **kwargs,
        }

        if exc_info and sys.exc_info()[0] is not None:
            log_entry["exception"] = traceback.format_exc()

        # Remove None values
        log_entry = {k: v for k, v in log_entry.items() if v is not None}

        print(json.dumps(log_entry, default=str))

    def info(self, message: str, **kwargs: Any) -> None:
        """Log info level message."""
        self._log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Log warning level message."""
        self._log("WARNING", message, **kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Log error level message, optionally with the active traceback."""
        self._log("ERROR", message, exc_info=exc_info, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log error level message with the active traceback."""
        self._log("ERROR", message, exc_info=True, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        """Log debug level message."""
        self._log("DEBUG", message, **kwargs)

    def bind(self, correlation_id: str) -> None:
        """Attach the correlation ID of the request being handled."""
        self.correlation_id = correlation_id


def get_logger(name: str, correlation_id: Optional[str] = None) -> StructuredLogger:
    """Return a structured logger for a module."""
    return StructuredLogger(name, correlation_id)


def get_correlation_id(event: Dict[str, Any]) -> str:
    """
    Extract or generate correlation ID from Lambda event.

    Checks for correlation ID in:
    1. event['requestContext']['requestId'] (API Gateway)
    2. event['headers']['x-correlation-id']
    3. Generates new UUID if not found
    """
    # Try API Gateway request context
    if "requestContext" in event and "requestId" in (event.get("requestContext") or {}):
        return str(event["requestContext"]["requestId"])

    # Try custom header (header names are case-insensitive)
    headers = event.get("headers") or {}
    for key, value in headers.items():
        if key.lower() == "x-correlation-id" and value:
            return str(value)

    # Generate new ID
    return str(uuid.uuid4())
