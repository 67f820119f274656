"""Observability for relcache: structured logging."""

from relcache.observability.logging import (
    close_file_logging,
    configure_logging,
    entity_context,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "entity_context",
    "get_logger",
    "get_logs_dir",
]
