"""
Structured logging utility for the dispatch engine.

Emits one JSON object per line with recipient masking, context injection,
and operation timing so delivery outcomes can be filtered per tenant.
"""

import json
import logging
import time
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional
from urllib.parse import urlsplit, urlunsplit


def mask_phone(phone: Optional[str]) -> str:
    """
    Mask a chat recipient so only the last four digits remain visible.

    Example:
        >>> mask_phone("5511999998888")
        "*********8888"
        >>> mask_phone("+55 (11) 99999-8888")
        "*********8888"
    """
    if not phone:
        return "unknown"

    digits = "".join(ch for ch in str(phone) if ch.isdigit())
    if len(digits) < 8:
        return "invalid"

    return f"{'*' * (len(digits) - 4)}{digits[-4:]}"


def mask_url(url: Optional[str]) -> str:
    """
    Strip user info, query string and fragment from a URL before logging.

    Webhook receivers frequently embed tokens in the query string.
    """
    if not url:
        return "unknown"

    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return "invalid"

    host = parts.hostname or ""
    if port:
        host = f"{host}:{port}"
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


SENSITIVE_KEYS = frozenset(
    {"secret", "api_key", "apikey", "authorization", "x-hub-signature-256", "password", "token"}
)
REDACTED = "[redacted]"


def redact(value: Any) -> Any:
    """
    Replace values stored under sensitive keys, at any depth.

    Webhook secrets, gateway API keys and signature headers must never reach
    the log stream even when a caller passes a whole config as context.
    """
    if isinstance(value, dict):
        return {
            key: REDACTED if str(key).lower() in SENSITIVE_KEYS else redact(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value


class StructuredLogger:
    """
    JSON-formatted logger with context injection and operation timing.

    Context dictionaries pass through ``redact`` so secrets and API keys are
    replaced before serialisation.
    """

    def __init__(self, name: str):
        """
        Initialize structured logger.

        Args:
            name: Logger name (typically __name__ from calling module)
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setLevel(logging.DEBUG)
            handler.setFormatter(logging.Formatter("%(message)s"))
            self.logger.addHandler(handler)

    def _format_log(
        self,
        level: str,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> str:
        """
        Format log entry as JSON.

        Args:
            level: Log level (DEBUG, INFO, WARNING, ERROR)
            message: Human-readable message
            operation: Operation name (e.g., "deliver_webhook", "publish")
            context: Context dict with tenant_id, action_id, event, etc.
            duration_ms: Operation duration in milliseconds
            error: Error message if applicable

        Returns:
            JSON-formatted log string
        """
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "message": message,
        }

        if operation:
            log_entry["operation"] = operation

        if context:
            log_entry["context"] = redact(context)

        if duration_ms is not None:
            log_entry["duration_ms"] = round(duration_ms, 2)

        if error:
            log_entry["error"] = error

        return json.dumps(log_entry, ensure_ascii=False, default=str)

    def debug(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        """Log debug message."""
        self.logger.debug(self._format_log("DEBUG", message, operation, context))

    def info(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
    ):
        """Log info message."""
        self.logger.info(self._format_log("INFO", message, operation, context, duration_ms))

    def warning(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        """Log warning message."""
        self.logger.warning(self._format_log("WARNING", message, operation, context, error=error))

    def error(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ):
        """Log error message."""
        self.logger.error(
            self._format_log("ERROR", message, operation, context, duration_ms, error)
        )


def log_operation(operation_name: str):
    """
    Decorator to log operation start, duration, and completion.

    Usage:
        @log_operation("send_test")
        def send_test(tenant_id, draft):
            ...
    """

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = StructuredLogger(func.__module__)

            context: Dict[str, Any] = {"function": func.__name__}
            if "tenant_id" in kwargs:
                context["tenant_id"] = kwargs["tenant_id"]
            if "recipient" in kwargs:
                context["recipient_masked"] = mask_phone(kwargs["recipient"])
            if kwargs.get("event") is not None:
                context["event"] = str(getattr(kwargs["event"], "value", kwargs["event"]))

            logger.debug(f"Starting {operation_name}", operation=operation_name, context=context)

            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                duration_ms = (time.time() - start_time) * 1000
                logger.info(
                    f"Completed {operation_name}",
                    operation=operation_name,
                    context=context,
                    duration_ms=duration_ms,
                )
                return result
            except Exception as e:
                duration_ms = (time.time() - start_time) * 1000
                logger.error(
                    f"Failed {operation_name}",
                    operation=operation_name,
                    context=context,
                    error=str(e),
                    duration_ms=duration_ms,
                )
                raise

        return wrapper

    return decorator


def get_logger(name: str) -> StructuredLogger:
    """
    Factory function to get a structured logger instance.

    Args:
        name: Logger name (typically __name__ from calling module)

    Returns:
        StructuredLogger instance
    """
    return StructuredLogger(name)
