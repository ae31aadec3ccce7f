"""
Error handling for composer-depgraph.

Every recoverable failure during discovery (a missing lock file, a broken
manifest, an unreachable tag list) is routed through the ErrorHandler so it
is logged once, counted per category, and forwarded to registered callbacks.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable, Dict, List, Optional


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """What kind of datum was lost."""

    PARSING = "PARSING"
    NETWORK = "NETWORK"
    VALIDATION = "VALIDATION"
    CREDENTIAL = "CREDENTIAL"
    CONFIGURATION = "CONFIGURATION"


@dataclass
class ErrorContext:
    """Structured error context information."""

    level: ErrorLevel
    category: ErrorCategory
    message: str
    module: str
    function: str
    details: Dict[str, Any] = field(default_factory=dict)
    exception: Optional[BaseException] = None
    traceback_info: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
        }


# Patterns that must never reach a log line
SENSITIVE_PATTERNS = [
    (re.compile(r"(gh[pousr]_)[A-Za-z0-9]{8,}"), r"\1[REDACTED]"),
    (re.compile(r"(github_pat_)[A-Za-z0-9_]{8,}"), r"\1[REDACTED]"),
    (
        re.compile(r'(token["\s]*[:=]["\s]*)(?=[A-Za-z0-9_\-+=/.]*\d)[A-Za-z0-9_\-+=/.]{16,}', re.I),
        r"\1[REDACTED]",
    ),
    (re.compile(r"(https?://[^@\s]+:)[^@\s]+@", re.I), r"\1[REDACTED]@"),
    (re.compile(r"(Authorization:\s*\w+\s+)[^\s]+", re.I), r"\1[REDACTED]"),
]

SENSITIVE_KEYS = {"token", "password", "secret", "credential", "authorization"}

# Keys that name a kind of secret rather than hold one
DESCRIPTIVE_KEYS = {"credential_type"}


class SecureLogger:
    """Logger wrapper that scrubs tokens from messages and details."""

    def __init__(self, name: str, level: int = logging.WARNING):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self.logger.addHandler(handler)

    def sanitize_message(self, message: str) -> str:
        sanitized = message
        for pattern, replacement in SENSITIVE_PATTERNS:
            sanitized = pattern.sub(replacement, sanitized)
        return sanitized

    def sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        for key, value in data.items():
            if key.lower() not in DESCRIPTIVE_KEYS and any(
                sensitive in key.lower() for sensitive in SENSITIVE_KEYS
            ):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self.sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self.sanitize_message(value)
            else:
                sanitized[key] = value
        return sanitized

    def log_error_context(self, context: ErrorContext) -> None:
        log_data: Dict[str, Any] = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self.sanitize_dict(context.details),
        }
        if context.exception is not None:
            log_data["exception"] = type(context.exception).__name__
            log_data["reason"] = self.sanitize_message(str(context.exception))

        self.logger.log(
            getattr(logging, context.level.value),
            f"{self.sanitize_message(context.message)} | {log_data}",
        )


# Error callback type
ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler.

    Provides logging, callbacks and per-category statistics for library
    components.
    """

    def __init__(
        self,
        logger_name: str = "composer_depgraph",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ) -> None:
        """
        Register error callback.

        Args:
            callback: Function to call on errors
            category: Error category to filter, None for all errors
        """
        if not self.enable_callbacks:
            return

        if category is None:
            self.global_callbacks.append(callback)
        else:
            self.error_callbacks.setdefault(category, []).append(callback)

    def unregister_callback(self, callback: ErrorCallback) -> None:
        if callback in self.global_callbacks:
            self.global_callbacks.remove(callback)
        for callbacks in self.error_callbacks.values():
            if callback in callbacks:
                callbacks.remove(callback)

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Args:
            level: Error severity level
            category: Error category
            message: Error message
            module: Module where error occurred
            function: Function where error occurred
            exception: Optional exception object
            details: Additional error details

        Returns:
            ErrorContext: The created error context
        """
        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=(
                "".join(traceback.format_exception(type(exception), exception, exception.__traceback__))
                if exception is not None
                else None
            ),
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            callbacks = self.error_callbacks.get(category, []) + self.global_callbacks
            for callback in callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    # Don't let callback errors break discovery
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def warning(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle warning level error."""
        return self.handle_error(
            ErrorLevel.WARNING, category, message, module, function, **kwargs
        )

    def error(
        self, category: ErrorCategory, message: str, module: str, function: str, **kwargs
    ) -> ErrorContext:
        """Handle error level error."""
        return self.handle_error(
            ErrorLevel.ERROR, category, message, module, function, **kwargs
        )

    def get_error_stats(self) -> Dict[str, int]:
        return self.error_stats.copy()


# Global error handler instance
_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """
    Get the global error handler instance.

    Returns:
        ErrorHandler: Global error handler
    """
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "composer_depgraph",
) -> ErrorHandler:
    """
    Replace the global error handler with a freshly configured one.

    Args:
        log_level: Logging level
        enable_callbacks: Whether to enable callbacks
        logger_name: Logger name

    Returns:
        ErrorHandler: Configured error handler
    """
    global _global_error_handler
    _global_error_handler = ErrorHandler(logger_name, log_level, enable_callbacks)
    return _global_error_handler


def log_fetch_warning(
    message: str,
    module: str,
    function: str,
    repository: Optional[str] = None,
    path: Optional[str] = None,
    exception: Optional[BaseException] = None,
) -> ErrorContext:
    """
    Record a datum that could not be fetched from the forge.

    Args:
        message: What was being fetched
        module: Module name
        function: Function name
        repository: ``owner/repo`` of the request
        path: File path inside the repository, if any
        exception: The underlying failure
    """
    details: Dict[str, Any] = {}
    if repository is not None:
        details["repository"] = repository
    if path is not None:
        details["path"] = path

    return get_error_handler().warning(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
    )


def log_manifest_error(
    message: str,
    module: str,
    function: str,
    repository: Optional[str] = None,
    file_path: Optional[str] = None,
    exception: Optional[BaseException] = None,
) -> ErrorContext:
    """
    Record a manifest or lock file that could not be decoded.

    Args:
        message: Error message
        module: Module name
        function: Function name
        repository: ``owner/repo`` holding the file
        file_path: Path of the file inside the repository
        exception: Optional exception
    """
    details: Dict[str, Any] = {}
    if repository is not None:
        details["repository"] = repository
    if file_path is not None:
        details["file_path"] = file_path
        details["file_name"] = PurePosixPath(file_path).name

    return get_error_handler().warning(
        ErrorCategory.PARSING,
        message,
        module,
        function,
        details=details,
        exception=exception,
    )


def log_credential_error(
    message: str,
    module: str,
    function: str,
    credential_type: Optional[str] = None,
    exception: Optional[BaseException] = None,
) -> ErrorContext:
    """
    Convenience function for logging credential errors.

    Args:
        message: Error message
        module: Module name
        function: Function name
        credential_type: Type of credential (token, config file, ...)
        exception: Optional exception
    """
    details: Dict[str, Any] = {}
    if credential_type is not None:
        details["credential_type"] = credential_type

    return get_error_handler().warning(
        ErrorCategory.CREDENTIAL,
        message,
        module,
        function,
        details=details,
        exception=exception,
    )
