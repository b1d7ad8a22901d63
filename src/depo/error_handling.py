"""
Error handling system for depo.

Defines the exception taxonomy raised by the core (package model, installer,
resolver, discovery client) and a central handler that logs every reported
failure with sensitive data masked before the exception reaches the caller.
"""

import logging
import re
import sys
import traceback
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from urllib.parse import urlparse


class ErrorLevel(Enum):
    """Error severity levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class ErrorCategory(Enum):
    """Error categories, one per failure kind the core can surface."""

    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    CONSTRAINT = "CONSTRAINT"
    RESOLUTION = "RESOLUTION"
    SOURCE_CONTROL = "SOURCE_CONTROL"
    FILESYSTEM = "FILESYSTEM"
    NETWORK = "NETWORK"
    PERSISTENCE = "PERSISTENCE"
    BUILD = "BUILD"
    CREDENTIAL = "CREDENTIAL"
    CONFIGURATION = "CONFIGURATION"


class DepoError(Exception):
    """Base class for every failure surfaced by depo."""

    category = ErrorCategory.CONFIGURATION

    def __init__(
        self,
        message: str,
        *,
        dependency: Optional[str] = None,
        path: Optional[Union[str, Path]] = None,
        cause: Optional[BaseException] = None,
        suggestions: Optional[List[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.dependency = dependency
        self.path = str(path) if path is not None else None
        self.cause = cause
        self.suggestions = suggestions or []

    def details(self) -> Dict[str, Any]:
        """Context attached to the error, for logging."""
        details: Dict[str, Any] = {}
        if self.dependency:
            details["dependency"] = self.dependency
        if self.path:
            details["path"] = self.path
        if self.cause is not None:
            details["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return details

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message}: {self.cause}"
        return self.message


class NotFoundError(DepoError):
    """A dependency (or other named entity) does not exist."""

    category = ErrorCategory.NOT_FOUND


class PackageRecordNotFoundError(NotFoundError):
    """No package record exists at the project root."""

    def __init__(self, path: Union[str, Path]):
        super().__init__(
            f"Package file not found at {path}",
            path=path,
            suggestions=["Run 'depo init' to create a package in this directory"],
        )


class AlreadyExistsError(DepoError):
    category = ErrorCategory.ALREADY_EXISTS


class InvalidConstraintError(DepoError):
    category = ErrorCategory.CONSTRAINT


class ResolutionError(DepoError):
    """A well-formed constraint that nothing in the repository satisfies."""

    category = ErrorCategory.RESOLUTION


class UnresolvableConstraintError(ResolutionError):
    pass


class NoMatchingVersionError(ResolutionError):
    pass


class SourceControlError(DepoError):
    category = ErrorCategory.SOURCE_CONTROL


class FilesystemError(DepoError):
    category = ErrorCategory.FILESYSTEM


class RemoteServiceError(DepoError):
    category = ErrorCategory.NETWORK

    def __init__(self, message: str, *, status_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.status_code = status_code


class RateLimitedError(RemoteServiceError):
    """The search service refused the request because of rate limiting."""

    def __init__(self, message: str = "Search API rate limit exceeded", **kwargs):
        kwargs.setdefault(
            "suggestions",
            ["Configure a GitHub token with 'depo token set <token>'"],
        )
        super().__init__(message, **kwargs)


class InvalidCredentialError(DepoError):
    """A token that fails format validation."""

    category = ErrorCategory.CREDENTIAL


class PersistenceError(DepoError):
    category = ErrorCategory.PERSISTENCE


class BuildError(DepoError):
    category = ErrorCategory.BUILD


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
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error context to dictionary for logging."""
        return {
            "level": self.level.value,
            "category": self.category.value,
            "message": self.message,
            "module": self.module,
            "function": self.function,
            "details": self.details,
            "exception_type": type(self.exception).__name__ if self.exception else None,
            "exception_message": str(self.exception) if self.exception else None,
            "traceback": self.traceback_info,
            "suggestions": self.suggestions,
        }


# Patterns for credentials that may leak into messages
SENSITIVE_PATTERNS = [
    (r'token["\s]*[:=]["\s]*([a-zA-Z0-9_\-+=/.]{8,})', 'token="[REDACTED]"'),
    (r"(https?://[^@\s]+:)[^@\s]+@", r"\1[REDACTED]@"),
    (r"(https?://)[^@\s:/]+@", r"\1[REDACTED]@"),
    (r"Authorization:\s*\w+\s+([^\s]+)", "Authorization: [REDACTED]"),
    (r"Bearer\s+[a-zA-Z0-9_\-+=/.]{8,}", "Bearer [REDACTED]"),
    (r"gh[pousr]_[A-Za-z0-9]{16,}", "[REDACTED]"),
]


class SecureLogger:
    """Logger wrapper that masks credentials before anything is emitted."""

    def __init__(self, name: str, level: int = logging.WARNING, mask: bool = True):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)
        self.mask = mask

        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(
                logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            )
            self.logger.addHandler(handler)

    def _sanitize_message(self, message: str) -> str:
        if not self.mask:
            return message

        sanitized = message
        for pattern, replacement in SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def _sanitize_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        sanitized = {}
        sensitive_keys = {"token", "password", "secret", "credential", "auth"}

        for key, value in data.items():
            if self.mask and any(s in key.lower() for s in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize_dict(value)
            elif isinstance(value, str):
                sanitized[key] = self._sanitize_message(value)
            else:
                sanitized[key] = value

        return sanitized

    def log_error_context(self, context: ErrorContext):
        """Log error context at its own level."""
        log_data: Dict[str, Any] = {
            "category": context.category.value,
            "module": context.module,
            "function": context.function,
            "details": self._sanitize_dict(context.details),
        }

        if context.exception:
            log_data["exception"] = type(context.exception).__name__
        if context.suggestions:
            log_data["suggestions"] = context.suggestions

        message = f"{self._sanitize_message(context.message)} | {log_data}"
        self.logger.log(getattr(logging, context.level.value), message)


ErrorCallback = Callable[[ErrorContext], None]


class ErrorHandler:
    """
    Centralized error handler for consistent error management.

    Every failure the core raises is reported here first, so front ends (CLI,
    GUI bridge) can observe failures through callbacks without parsing
    exception text.
    """

    def __init__(
        self,
        logger_name: str = "depo",
        log_level: int = logging.WARNING,
        enable_callbacks: bool = True,
        mask_sensitive_data: bool = True,
    ):
        self.logger = SecureLogger(logger_name, log_level, mask_sensitive_data)
        self.enable_callbacks = enable_callbacks
        self.error_callbacks: Dict[ErrorCategory, List[ErrorCallback]] = {}
        self.global_callbacks: List[ErrorCallback] = []
        self.error_stats: Dict[str, int] = {}

    def register_callback(
        self, callback: ErrorCallback, category: Optional[ErrorCategory] = None
    ):
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

    def handle_error(
        self,
        level: ErrorLevel,
        category: ErrorCategory,
        message: str,
        module: str,
        function: str,
        exception: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None,
    ) -> ErrorContext:
        """
        Handle an error with structured logging and callbacks.

        Returns:
            ErrorContext: The created error context
        """
        traceback_info = None
        if exception is not None and exception.__traceback__ is not None:
            traceback_info = "".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            )

        context = ErrorContext(
            level=level,
            category=category,
            message=message,
            module=module,
            function=function,
            details=details or {},
            exception=exception,
            traceback_info=traceback_info,
            suggestions=suggestions or [],
        )

        stat_key = f"{category.value}_{level.value}"
        self.error_stats[stat_key] = self.error_stats.get(stat_key, 0) + 1

        self.logger.log_error_context(context)

        if self.enable_callbacks:
            for callback in self.error_callbacks.get(category, []) + self.global_callbacks:
                try:
                    callback(context)
                except Exception as cb_error:
                    # Callback failures must not mask the original error
                    self.logger.logger.error(f"Error in callback: {cb_error}")

        return context

    def report(
        self,
        error: DepoError,
        module: str,
        function: str,
        level: ErrorLevel = ErrorLevel.ERROR,
    ) -> ErrorContext:
        """Report a DepoError using the context it already carries."""
        return self.handle_error(
            level,
            error.category,
            error.message,
            module,
            function,
            exception=error.cause or error,
            details=error.details(),
            suggestions=error.suggestions,
        )

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


_global_error_handler: Optional[ErrorHandler] = None


def get_error_handler() -> ErrorHandler:
    """Get the global error handler instance."""
    global _global_error_handler
    if _global_error_handler is None:
        _global_error_handler = ErrorHandler()
    return _global_error_handler


def setup_error_handling(
    log_level: int = logging.WARNING,
    enable_callbacks: bool = True,
    logger_name: str = "depo",
    mask_sensitive_data: bool = True,
) -> ErrorHandler:
    """Replace the global error handler with a freshly configured one."""
    global _global_error_handler
    _global_error_handler = ErrorHandler(
        logger_name, log_level, enable_callbacks, mask_sensitive_data
    )
    return _global_error_handler


def sanitize_url(url: str) -> str:
    """Strip userinfo from a URL so it can be logged."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return "[REDACTED_URL]"
    if not (parsed.username or parsed.password):
        return url
    netloc = parsed.hostname or "unknown-host"
    if parsed.port:
        netloc += f":{parsed.port}"
    return parsed._replace(netloc=netloc).geturl()


def log_network_error(
    message: str,
    module: str,
    function: str,
    url: Optional[str] = None,
    status_code: Optional[int] = None,
    exception: Optional[BaseException] = None,
):
    """Convenience function for logging network errors."""
    details: Dict[str, Any] = {}
    if url is not None:
        details["url"] = sanitize_url(url)
    if status_code is not None:
        details["status_code"] = status_code

    get_error_handler().error(
        ErrorCategory.NETWORK,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Check network connectivity",
            "Configure a GitHub token if the search is rate limited",
        ],
    )


def log_credential_error(
    message: str,
    module: str,
    function: str,
    credential_type: Optional[str] = None,
    exception: Optional[BaseException] = None,
):
    """Convenience function for logging credential errors."""
    details = {}
    if credential_type is not None:
        details["credential_type"] = credential_type

    get_error_handler().warning(
        ErrorCategory.CREDENTIAL,
        message,
        module,
        function,
        details=details,
        exception=exception,
        suggestions=[
            "Verify the token is valid and not expired",
            "Set it again with 'depo token set <token>'",
        ],
    )
