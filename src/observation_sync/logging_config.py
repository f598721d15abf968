"""
logging_config.py - Structured logging for observation_sync.

Provides:
- JSON log formatter
- Production logging configuration
- Event helpers for the queue and drain lifecycle
"""

import json
import logging
import os


class JSONFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    _RESERVED = frozenset((
        'name', 'msg', 'args', 'created', 'filename', 'funcName',
        'levelname', 'levelno', 'lineno', 'module', 'msecs',
        'pathname', 'process', 'processName', 'relativeCreated',
        'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
        'message', 'taskName'
    ))

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra
        self._hostname = os.environ.get("HOSTNAME", "unknown")

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "hostname": self._hostname
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in self._RESERVED:
                    log_data[key] = value

        return json.dumps(log_data, default=str)


class SyncLogger:
    """
    Structured logger for sync operations.

    Provides convenience methods for common sync events.
    """

    def __init__(self, name: str = "observation_sync"):
        self._logger = logging.getLogger(name)

    def operation_queued(self, kind: str, record_id: str, queue_length: int) -> None:
        self._logger.info(
            f"Queued {kind} for {record_id} ({queue_length} pending)",
            extra={
                "event": "operation_queued",
                "kind": kind,
                "record_id": record_id,
                "queue_length": queue_length,
            }
        )

    def drain_started(self, queue_length: int, remote: str) -> None:
        self._logger.info(
            f"Processing {queue_length} offline actions",
            extra={
                "event": "drain_started",
                "queue_length": queue_length,
                "remote": remote,
            }
        )

    def drain_completed(
        self,
        succeeded: int,
        remaining: int,
        refreshed: bool,
        duration_ms: float
    ) -> None:
        self._logger.info(
            f"Drain completed: succeeded={succeeded}, remaining={remaining}, refreshed={refreshed}",
            extra={
                "event": "drain_completed",
                "succeeded": succeeded,
                "remaining": remaining,
                "refreshed": refreshed,
                "duration_ms": duration_ms,
            }
        )

    def item_failed(self, kind: str, record_id: str, attempts: int, error: str) -> None:
        self._logger.warning(
            f"Error processing queue item {kind} {record_id}: {error}",
            extra={
                "event": "item_failed",
                "kind": kind,
                "record_id": record_id,
                "attempts": attempts,
                "error": error,
            }
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: str | None = None
) -> None:
    """
    Configure logging for production.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON formatting
        log_file: Optional log file path
    """
    handlers: list[logging.Handler] = []

    console = logging.StreamHandler()
    if json_format:
        console.setFormatter(JSONFormatter())
    else:
        console.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
    handlers.append(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(JSONFormatter())
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        handlers=handlers,
        force=True,
    )
