"""
Console and queue logging for the credential lifecycle core.

1. ContextAwareLogger formats extras into console messages (pipe-delimited)
2. AzureQueueHandler ships structured entries to an Azure Storage Queue
"""

import logging
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from azure.storage.queue import QueueClient, QueueServiceClient

from ..config import get_config
from .json_utils import dumps

_service_logger = None

_STANDARD_RECORD_FIELDS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
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
    "correlation_id",
}


class ContextAwareLogger:
    """
    Logger wrapper that formats extra attributes in message while preserving them.

    Extras show up in console output even when a host runtime replaces the
    formatters.
    """

    def __init__(self, logger):
        self.logger = logger

    def _log_with_formatted_extra(self, level, msg, **kwargs):
        extra = kwargs.pop("extra", {})

        if extra:
            extra_str = " | ".join([f"{k}={v}" for k, v in extra.items()])
            full_msg = f"{msg} | {extra_str}"
        else:
            full_msg = msg

        log_method = getattr(self.logger, level)
        log_method(full_msg, extra=extra, **kwargs)

    def set_level(self, level):
        """Set the logging level of the underlying logger."""
        self.logger.setLevel(level)

    def info(self, msg, **kwargs):
        self._log_with_formatted_extra("info", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._log_with_formatted_extra("error", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._log_with_formatted_extra("warning", msg, **kwargs)

    def debug(self, msg, **kwargs):
        self._log_with_formatted_extra("debug", msg, **kwargs)

    def exception(self, msg, **kwargs):
        self._log_with_formatted_extra("exception", msg, **kwargs)


class CorrelationIdFilter(logging.Filter):
    """Adds the current thread's correlation id to log records."""

    def filter(self, record):
        # Lazy import, exceptions logs through this module
        from ..exceptions import get_correlation_id

        correlation_id = get_correlation_id()
        if correlation_id:
            record.correlation_id = correlation_id

        return True


class AzureQueueHandler(logging.Handler):
    """
    Logging handler that sends structured log entries to Azure Storage Queue.

    Entries are buffered and sent one message per entry once the buffer
    reaches ``batch_size`` or the handler is flushed.
    """

    def __init__(
        self,
        queue_name: str = "logs-queue",
        connection_string: Optional[str] = None,
        batch_size: int = 10,
    ):
        super().__init__()
        self.queue_name = queue_name
        self.connection_string = connection_string or get_config().queue.connection_string
        self.batch_size = batch_size
        self.log_buffer: List[Dict[str, Any]] = []

        if not self.connection_string:
            sys.stderr.write("Azure Storage connection string not provided\n")
        else:
            self._ensure_queue_exists()

    def _ensure_queue_exists(self) -> bool:
        """Create the log queue if it is missing."""
        try:
            queue_service = QueueServiceClient.from_connection_string(self.connection_string)
            queues = queue_service.list_queues()
            if not any(queue.name == self.queue_name for queue in queues):
                sys.stderr.write(f"Queue '{self.queue_name}' does not exist. Creating...\n")
                queue_service.create_queue(self.queue_name)
            return True
        except Exception as e:
            sys.stderr.write(f"Failed to ensure queue exists: {str(e)}\n")
            return False

    def build_entry(self, record: logging.LogRecord) -> Dict[str, Any]:
        """Convert a log record to the JSON-ready entry sent to the queue."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "correlation_id"):
            log_entry["correlation_id"] = record.correlation_id

        context = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_FIELDS
            and not key.startswith("__")
            and not callable(value)
        }
        if context:
            log_entry["context"] = context

        if record.exc_info and record.exc_info[0]:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": [
                    line.rstrip() for line in traceback.format_exception(*record.exc_info)
                ],
            }

        return log_entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.log_buffer.append(self.build_entry(record))
            if len(self.log_buffer) >= self.batch_size:
                self.flush()
        except Exception:
            self.handleError(record)

    def flush(self) -> None:
        """Send any buffered log records to the queue."""
        if not self.log_buffer or not self.connection_string:
            return

        try:
            queue_client = QueueClient.from_connection_string(
                conn_str=self.connection_string, queue_name=self.queue_name
            )
            for log_entry in self.log_buffer:
                try:
                    queue_client.send_message(dumps(log_entry))
                except Exception as log_error:
                    sys.stderr.write(f"Error sending individual log entry: {str(log_error)}\n")
            self.log_buffer.clear()
        except Exception as e:
            sys.stderr.write(f"Error sending logs to Azure Queue: {str(e)}\n")

    def close(self) -> None:
        """Flush any remaining logs before closing."""
        self.flush()
        super().close()


def configure_logging(
    service_name: str,
    log_level: Optional[Union[int, str]] = None,
    enable_queue: Optional[bool] = None,
    queue_name: Optional[str] = None,
    queue_batch_size: int = 10,
    connection_string: Optional[str] = None,
) -> "ContextAwareLogger":
    """
    Configure logging with console and optional queue output.

    Args:
        service_name: Name of the process or worker being configured
        log_level: Logging level (default: from config)
        enable_queue: Whether to enable Azure Queue logging (default: from config)
        queue_name: Name of the queue to send logs to (default: from config)
        queue_batch_size: Number of logs to batch before sending
        connection_string: Azure Storage connection string (default: from config)

    Returns:
        The configured logger wrapped with ContextAwareLogger
    """
    global _service_logger

    app_config = get_config()

    if log_level is None:
        log_level = app_config.logging.level
    if enable_queue is None:
        enable_queue = app_config.logging.enable_queue
    if connection_string is None:
        connection_string = app_config.queue.connection_string
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"credential_lifecycle.{service_name}")
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    correlation_filter = CorrelationIdFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    console_handler.addFilter(correlation_filter)
    logger.addHandler(console_handler)

    if enable_queue:
        queue_name = queue_name or app_config.queue.logs_queue_name
        queue_handler = AzureQueueHandler(
            queue_name=queue_name, connection_string=connection_string, batch_size=queue_batch_size
        )
        queue_handler.setLevel(log_level)
        queue_handler.addFilter(correlation_filter)
        logger.addHandler(queue_handler)

    wrapped_logger = ContextAwareLogger(logger)
    wrapped_logger.info(
        "Logger configured",
        extra={
            "service_name": service_name,
            "queue_logging": enable_queue,
            "queue_name": queue_name if enable_queue else None,
        },
    )
    _service_logger = wrapped_logger
    return wrapped_logger


def get_logger(log_level: Optional[Union[int, str]] = None) -> "ContextAwareLogger":
    """
    Get the service logger, or a wrapped root logger when none is configured.

    Args:
        log_level: Optional log level to set on the fallback logger
    """
    if _service_logger is not None:
        return _service_logger

    logger = logging.getLogger()

    if log_level is None:
        log_level = get_config().logging.level
    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    return ContextAwareLogger(logger)


def reset_logging() -> None:
    """Forget the configured service logger."""
    global _service_logger
    _service_logger = None
