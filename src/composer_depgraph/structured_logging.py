"""
Structured logging configuration for composer-depgraph.

Emits one JSON object per event so discovery runs can be followed by
machines as well as people.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Attributes every LogRecord carries; anything else came in through ``extra``
_RESERVED_RECORD_KEYS = set(
    logging.LogRecord("", logging.INFO, "", 0, "", None, None).__dict__
) | {"message", "asctime"}


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
        }

        message = record.getMessage()
        if message and message != getattr(record, "event_type", None):
            log_entry["message"] = message

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


class EventLogger:
    """Structured logger for discovery events."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(f"composer_depgraph.{name}")
        self._setup_logger()
        self.run_context: Dict[str, Any] = {}

    def _setup_logger(self) -> None:
        if not self.logger.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(StructuredFormatter())
            self.logger.addHandler(handler)
            self.logger.propagate = False

    def set_run_context(self, **context: Any) -> None:
        self.run_context = {key: value for key, value in context.items() if value is not None}

    def clear_run_context(self) -> None:
        self.run_context.clear()

    def _log(self, level: int, event_type: str, **kwargs: Any) -> None:
        log_data = {"event_type": event_type, **self.run_context, **kwargs}
        self.logger.log(level, event_type, extra=log_data)

    def info(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event_type, **kwargs)

    def warning(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event_type, **kwargs)

    def error(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.ERROR, event_type, **kwargs)

    def debug(self, event_type: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event_type, **kwargs)


# Global logger instances
_discovery_logger = EventLogger("discovery")
_forge_logger = EventLogger("forge")


def get_discovery_logger() -> EventLogger:
    """Get discovery run logger."""
    return _discovery_logger


def get_forge_logger() -> EventLogger:
    """Get forge request logger."""
    return _forge_logger


def log_run_start(run_id: str, organization: str, total_repositories: int) -> None:
    """Log discovery start event and remember the run context."""
    logger = get_discovery_logger()
    logger.set_run_context(run_id=run_id, organization=organization)
    logger.info("discovery_started", total_repositories=total_repositories)


def log_repository_processed(
    index: int,
    total: int,
    repository: str,
    manifest_count: int,
    dependency_count: int,
) -> None:
    logger = get_discovery_logger()
    logger.info(
        "repository_processed",
        index=index,
        total=total,
        repository=repository,
        manifest_count=manifest_count,
        dependency_count=dependency_count,
    )


def log_run_complete(
    run_id: str,
    status: str,
    duration_ms: int,
    node_count: int = 0,
    edge_count: int = 0,
    warning_count: int = 0,
) -> None:
    """Log discovery completion and clear the run context."""
    logger = get_discovery_logger()
    logger.info(
        "discovery_completed",
        run_id=run_id,
        status=status,
        duration_ms=duration_ms,
        node_count=node_count,
        edge_count=edge_count,
        warning_count=warning_count,
    )
    logger.clear_run_context()


def log_forge_request(
    url: str,
    status_code: Optional[int] = None,
    response_time_ms: Optional[float] = None,
) -> None:
    """Log a forge API request; failures at warning level, the rest at debug."""
    logger = get_forge_logger()

    log_data: Dict[str, Any] = {"url": url}
    if status_code is not None:
        log_data["status_code"] = status_code
    if response_time_ms is not None:
        log_data["response_time_ms"] = response_time_ms

    if status_code is not None and status_code >= 400:
        logger.warning("forge_request_failed", **log_data)
    else:
        logger.debug("forge_request_completed", **log_data)


def configure_logging(log_level: str = "WARNING", enable_json: bool = True) -> None:
    """Configure the level and format of the event loggers."""
    level = getattr(logging, log_level.upper(), logging.WARNING)

    formatter: logging.Formatter
    if enable_json:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    for event_logger in (_discovery_logger, _forge_logger):
        event_logger.logger.setLevel(level)
        for handler in event_logger.logger.handlers:
            handler.setFormatter(formatter)


# Initialize with default configuration
configure_logging()
