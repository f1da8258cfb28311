"""Observability module for BookQuest.

Provides structured logging for the CLI and the generation pipeline.
"""

from bookquest.observability.logging import (
    close_file_logging,
    configure_logging,
    get_logger,
    get_logs_dir,
)

__all__ = [
    "close_file_logging",
    "configure_logging",
    "get_logger",
    "get_logs_dir",
]
