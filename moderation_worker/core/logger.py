import logging
import sys
from typing import Optional
from pathlib import Path

from moderation_worker.core.config import settings

# Context attributes copied from ``extra={...}`` into structured records
STRUCTURED_FIELDS = (
    "request_id",
    "bucket",
    "object_key",
    "content_kind",
    "user_id",
    "outcome",
)


class StructuredFormatter(logging.Formatter):
    """Single-line formatter that appends the moderation context of a record."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record):
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'logger': record.name,
            'function': f"{record.funcName}:{record.lineno}",
            'message': record.getMessage(),
            'service': self.service_name
        }

        for field in STRUCTURED_FIELDS:
            if hasattr(record, field):
                log_data[field] = getattr(record, field)

        line = f"[{record.levelname}] {record.getMessage()} | {log_data}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    service_name: str = "moderation-worker"
) -> logging.Logger:
    """
    Configure logging for the moderation worker.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for structured log output
        service_name: Service name for log formatting

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(service_name)
    logger.setLevel(getattr(logging, level.upper()))

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt='%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(StructuredFormatter(service_name))
        logger.addHandler(file_handler)

    return logger

# Initialize default logger
logger = setup_logging(level=settings.log_level, log_file=settings.log_file)
