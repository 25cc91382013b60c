"""
Centralized logging configuration for the relay recorder.

Console output is kept short; the rotating log file carries timestamps and
logger names so a single stream's session can be followed across threads.
"""

import logging
import logging.handlers
from pathlib import Path
from typing import Iterable, Optional

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("werkzeug",)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    log_file: str = "relay_recorder.log",
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
    console_output: bool = True,
    quiet_loggers: Iterable[str] = NOISY_LOGGERS
) -> Path:
    """
    Configure application-wide logging with console and file handlers.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (default: ./logs)
        log_file: Name of the log file
        max_bytes: Maximum size of each log file before rotation
        backup_count: Number of backup log files to keep
        console_output: Whether to output logs to console
        quiet_loggers: Logger names capped at WARNING

    Returns:
        Path of the active log file
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    log_path = Path(log_dir) if log_dir else Path("logs")
    log_path.mkdir(parents=True, exist_ok=True)
    full_log_file = log_path / log_file

    detailed_formatter = logging.Formatter(
        fmt='%(asctime)s - %(threadName)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_formatter = logging.Formatter(
        fmt='%(levelname)s - %(name)s - %(message)s'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    file_handler = logging.handlers.RotatingFileHandler(
        filename=str(full_log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(detailed_formatter)
    root_logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(console_formatter)
        root_logger.addHandler(console_handler)

    for name in quiet_loggers:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: level={log_level}, file={full_log_file}")
    return full_log_file


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class StreamLoggerAdapter(logging.LoggerAdapter):
    """Prefixes every record with the stream it belongs to.

    The stream path is also attached as the `stream_path` record attribute
    so handlers can filter on it.
    """

    def process(self, msg, kwargs):
        stream_path = self.extra['stream_path']
        kwargs.setdefault('extra', {})['stream_path'] = stream_path
        return f"[{stream_path}] {msg}", kwargs


def get_stream_logger(name: str, stream_path: str) -> StreamLoggerAdapter:
    """Get a logger whose messages are tagged with `stream_path`."""
    return StreamLoggerAdapter(logging.getLogger(name), {'stream_path': stream_path})
