"""
Structured logging configuration for depo.

Provides machine-readable JSON events for installs, package mutations, build
bridge generation and registry searches. Events go to stderr so they never
interleave with command output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_RESERVED_RECORD_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "getMessage",
    "exc_info",
    "exc_text",
    "stack_info",
    "message",
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class EventLogger:
    """Structured logger for named events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"depo.{name}")
        self.logger.propagate = False
        self._setup_logger()
        self.context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.WARNING)

    def set_context(self, project_root: Optional[str] = None, command: Optional[str] = None) -> None:
        """Attach project-wide fields to every subsequent event."""
        self.context = {}
        if project_root:
            self.context["project_root"] = project_root
        if command:
            self.context["command"] = command

    def clear_context(self) -> None:
        self.context.clear()

    def _log(self, level: str, event_type: str, **kwargs) -> None:
        log_data = {"event_type": event_type, **self.context, **kwargs}
        getattr(self.logger, level)(event_type, extra=log_data)

    def info(self, event_type: str, **kwargs) -> None:
        self._log("info", event_type, **kwargs)

    def warning(self, event_type: str, **kwargs) -> None:
        self._log("warning", event_type, **kwargs)

    def error(self, event_type: str, **kwargs) -> None:
        self._log("error", event_type, **kwargs)

    def debug(self, event_type: str, **kwargs) -> None:
        self._log("debug", event_type, **kwargs)


_install_logger = EventLogger("install")
_package_logger = EventLogger("package")
_registry_logger = EventLogger("registry")
_build_logger = EventLogger("build")

_ALL_LOGGERS = [_install_logger, _package_logger, _registry_logger, _build_logger]


def get_install_logger() -> EventLogger:
    return _install_logger


def get_package_logger() -> EventLogger:
    return _package_logger


def get_build_logger() -> EventLogger:
    return _build_logger


def log_install_started(name: str, source_url: str, constraint: Optional[str]) -> None:
    _install_logger.info(
        "install_started", dependency=name, source_url=source_url, constraint=constraint
    )


def log_install_finished(name: str, version: str, path: str, reused: bool) -> None:
    """Log the terminal success state of an install."""
    event = "install_reused" if reused else "install_finalized"
    _install_logger.info(event, dependency=name, version=version, path=path)


def log_dependency_change(action: str, name: str, **kwargs) -> None:
    """Log a mutation of the package record (added, removed, updated...)."""
    _package_logger.info(f"dependency_{action}", dependency=name, **kwargs)


def log_registry_search(
    query: str,
    result_count: int,
    authenticated: bool,
    response_time_ms: Optional[float] = None,
) -> None:
    log_data: Dict[str, Any] = {
        "query": query,
        "result_count": result_count,
        "authenticated": authenticated,
    }
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms

    if result_count == 0:
        _registry_logger.warning("registry_search_empty", **log_data)
    else:
        _registry_logger.info("registry_search", **log_data)


def log_bridge_generated(backend: str, dependency_count: int, files: Any) -> None:
    _build_logger.info(
        "bridge_generated",
        backend=backend,
        dependency_count=dependency_count,
        files=[str(f) for f in files],
    )


def set_command_context(project_root: Optional[str] = None, command: Optional[str] = None) -> None:
    """Set context for all event loggers."""
    for logger in _ALL_LOGGERS:
        logger.set_context(project_root, command)


def clear_command_context() -> None:
    for logger in _ALL_LOGGERS:
        logger.clear_context()


def configure_logging(log_level: str = "WARNING") -> None:
    """Configure the level of every depo logger."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    logging.getLogger("depo").setLevel(level)
    for logger in _ALL_LOGGERS:
        logger.logger.setLevel(level)
