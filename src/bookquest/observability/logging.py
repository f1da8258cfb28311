"""Structured logging configuration for BookQuest.

Two sinks are available:
- Console: Rich-rendered, level chosen by the -v count (stderr)
- File: every event as one JSON object per line in ``<log_dir>/debug.jsonl``
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path  # noqa: TC003 - Used at runtime for path operations
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from structlog.typing import Processor

_configured = False
_file_handler: logging.FileHandler | None = None
_logs_dir: Path | None = None

# Third-party loggers that flood DEBUG output during generation runs
_NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "anthropic",
    "openai",
    "langchain",
    "langchain_core",
    "langsmith",
    "asyncio",
)


class JSONLFileHandler(logging.FileHandler):
    """File handler that writes one JSON object per record."""

    def emit(self, record: logging.LogRecord) -> None:
        """Serialize the record (and any structlog event dict) as a JSON line."""
        try:
            entry: dict[str, object] = {
                "timestamp": datetime.now(UTC).isoformat(),
                "level": record.levelname,
                "logger": record.name,
            }

            # wrap_for_formatter hands the structlog event dict through record.msg
            if isinstance(record.msg, dict):
                event_dict = dict(record.msg)
                event_dict.pop("level", None)
                event_dict.pop("timestamp", None)
                entry["message"] = event_dict.pop("event", "")
                entry.update(event_dict)
            else:
                entry["message"] = record.getMessage()

            if self.stream:
                self.stream.write(json.dumps(entry, default=str) + "\n")
                self.stream.flush()
        except Exception:
            self.handleError(record)


def configure_logging(verbosity: int = 0, log_dir: Path | None = None) -> None:
    """Configure logging for BookQuest.

    Args:
        verbosity: 0=WARNING (default), 1=INFO, 2+=DEBUG on the console.
        log_dir: When given, also write all events to ``log_dir/debug.jsonl``.
    """
    global _configured, _file_handler, _logs_dir

    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
        _logs_dir = None

    levels = {0: logging.WARNING, 1: logging.INFO}
    console_level = levels.get(verbosity, logging.DEBUG)

    console_handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        tracebacks_show_locals=verbosity >= 2,
        show_time=verbosity >= 1,
        show_path=verbosity >= 2,
        markup=False,
        level=console_level,
    )
    handlers: list[logging.Handler] = [console_handler]

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        _logs_dir = log_dir
        _file_handler = JSONLFileHandler(str(log_dir / "debug.jsonl"), mode="a")
        _file_handler.setLevel(logging.DEBUG)
        handlers.append(_file_handler)

    root_level = logging.DEBUG if (verbosity > 0 or log_dir is not None) else logging.WARNING
    logging.basicConfig(level=root_level, format="%(message)s", handlers=handlers, force=True)

    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(root_level),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.typing.FilteringBoundLogger:
    """Get a structured logger, configuring defaults on first use.

    Args:
        name: Logger name (typically ``__name__``).
    """
    if not _configured:
        configure_logging()

    logger: structlog.typing.FilteringBoundLogger = structlog.get_logger(name)
    return logger


def get_logs_dir() -> Path | None:
    """Return the directory receiving ``debug.jsonl``, or None when file logging is off."""
    return _logs_dir


def close_file_logging() -> None:
    """Flush and close the JSONL file handler, if any."""
    global _file_handler, _logs_dir
    if _file_handler is not None:
        _file_handler.close()
        _file_handler = None
        _logs_dir = None
