"""
Structured logging utility for the comparison harness.

Provides JSON-formatted logging with bearer-token masking,
context injection, and operation timing for CI log collection.
"""

import inspect
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from functools import wraps


def mask_token(token: Optional[str]) -> str:
    """
    Mask an API token so it can appear in logs.

    Keeps the first and last 4 characters of long tokens.

    Args:
        token: Bearer token (JWT or opaque string)

    Returns:
        Masked token string

    Example:
        >>> mask_token("eyJhbGciOiJIUzI1NiJ9.abc.def")
        "eyJh...def"
        >>> mask_token(None)
        "none"
    """
    if not token:
        return "none"

    if len(token) <= 8:
        return "****"

    return f"{token[:4]}...{token[-4:]}"


_console_handler: Optional[logging.Handler] = None


def get_console_handler() -> logging.Handler:
    """
    Return the stderr handler shared by every StructuredLogger.

    stdout is reserved for the rendered report, so log lines go to stderr.
    Filters added here (e.g. token redaction) apply to all structured loggers.
    """
    global _console_handler
    if _console_handler is None:
        _console_handler = logging.StreamHandler()
        _console_handler.setFormatter(
            logging.Formatter("%(message)s", datefmt="%Y-%m-%dT%H:%M:%S")
        )
    return _console_handler


class StructuredLogger:
    """
    JSON-formatted logger with context injection and operation timing.

    Every entry is one JSON object per line so CI log collectors can parse it.
    """

    def __init__(self, name: str):
        """
        Initialize structured logger.

        Args:
            name: Logger name (typically __name__ from calling module)
        """
        self.logger = logging.getLogger(name)

        if not self.logger.handlers:
            self.logger.addHandler(get_console_handler())
            self.logger.propagate = False

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
            operation: Operation name (e.g., "dispatch", "await_ready")
            context: Context dict with node, method, attempt, etc.
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
            log_entry["context"] = context

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
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(self._format_log("DEBUG", message, operation, context))

    def info(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[float] = None,
    ):
        """Log info message."""
        log_json = self._format_log("INFO", message, operation, context, duration_ms)
        self.logger.info(log_json)

    def warning(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        """Log warning message."""
        log_json = self._format_log("WARNING", message, operation, context, error=error)
        self.logger.warning(log_json)

    def error(
        self,
        message: str,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        duration_ms: Optional[float] = None,
    ):
        """Log error message."""
        log_json = self._format_log(
            "ERROR", message, operation, context, duration_ms, error
        )
        self.logger.error(log_json)


_CONTEXT_TYPES = (str, int, float, bool, type(None))


def _call_context(func, signature: inspect.Signature, args, kwargs) -> Dict[str, Any]:
    """
    Log context for one call of ``func``.

    Scalar arguments are logged by name; any argument whose name contains
    ``token`` is masked. Containers and handles are left out.
    """
    context: Dict[str, Any] = {"function": func.__qualname__}
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        return context
    for name, value in bound.arguments.items():
        if name in ("self", "cls"):
            continue
        if "token" in name:
            context[f"{name}_masked"] = mask_token(value if isinstance(value, str) else None)
        elif isinstance(value, os.PathLike):
            context[name] = os.fspath(value)
        elif isinstance(value, _CONTEXT_TYPES):
            context[name] = value
    return context


def log_operation(operation_name: str):
    """
    Decorator logging the start, completion or failure of a harness operation.

    Completion and failure entries carry ``duration_ms``; failures re-raise.

    Usage:
        @log_operation("load_catalog")
        def load_catalog(path, filter=""):
            ...
    """

    def decorator(func):
        signature = inspect.signature(func)

        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            context = _call_context(func, signature, args, kwargs)

            logger.debug(
                f"Starting {operation_name}", operation=operation_name, context=context
            )

            start_time = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}",
                    operation=operation_name,
                    context=context,
                    error=f"{type(e).__name__}: {e}",
                    duration_ms=(time.monotonic() - start_time) * 1000,
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                operation=operation_name,
                context=context,
                duration_ms=(time.monotonic() - start_time) * 1000,
            )
            return result

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
