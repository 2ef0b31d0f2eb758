"""
NodePilot - Logging Configuration
=================================

Centralized logging setup for the API process and the standalone scheduler
daemon.

Features:
- Structured JSON log lines for files and non-interactive consoles
- Colored, compact console output when attached to a terminal
- Size-based log rotation
- Context fields (such as the current tick id) attached to every record
  emitted inside a block
- Webhook delivery of records flagged with `alert=True`, off the event loop
"""

import os
import sys
import logging
import logging.handlers
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import json
import queue
import traceback
from contextvars import ContextVar

import requests

from ..config import get_settings


# Attributes every LogRecord carries; anything else was added via `extra` or LogContext
_STANDARD_RECORD_ATTRS = frozenset((
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'message', 'exc_info', 'exc_text', 'stack_info', 'taskName',
))


# =============================================================================
# CUSTOM LOG FORMATTERS
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    Formats each record as one JSON object per line.

    Custom fields passed through `extra=` or `LogContext` are collected
    under the `extra` key.
    """

    def __init__(self, include_traceback: bool = True):
        self.include_traceback = include_traceback
        super().__init__()

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process_id': os.getpid(),
        }

        if record.exc_info and self.include_traceback:
            log_data['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info),
            }

        custom_fields = {
            key: value for key, value in record.__dict__.items()
            if key not in _STANDARD_RECORD_ATTRS
        }
        if custom_fields:
            log_data['extra'] = custom_fields

        try:
            return json.dumps(log_data, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            return f"{log_data['timestamp']} | {log_data['level']} | {log_data['logger']} | {log_data['message']}"


class ColoredConsoleFormatter(logging.Formatter):
    """Human-friendly console output for interactive terminals."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        colored_level = f"{color}{record.levelname:<8}{reset}"
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')

        logger_name = record.name.rsplit('.', 1)[-1]
        logger_name = f"{logger_name:<18}"[:18]

        message = record.getMessage()
        tick_id = getattr(record, 'tick_id', None)
        if tick_id:
            message = f"[tick {tick_id}] {message}"

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        return f"{timestamp} | {colored_level} | {logger_name} | {message}"


# =============================================================================
# LOGGING SETUP FUNCTIONS
# =============================================================================

def setup_logging(
    log_level: Optional[str] = None,
    log_file: Optional[str] = None
) -> None:
    """
    Configure the root logger with console and rotating file handlers.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, uses config setting)
    """
    settings = get_settings()

    log_level = log_level or settings.log_level
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    log_file = log_file or settings.log_file
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    if sys.stdout.isatty():
        console_handler.setFormatter(ColoredConsoleFormatter())
    else:
        console_handler.setFormatter(StructuredFormatter(include_traceback=False))
    root_logger.addHandler(console_handler)

    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_size * 1024 * 1024,  # MB to bytes
        backupCount=settings.log_backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(StructuredFormatter(include_traceback=True))
    root_logger.addHandler(file_handler)

    _configure_component_loggers(numeric_level)

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured - Level: {log_level}, File: {log_file}")


def _configure_component_loggers(default_level: int) -> None:
    """Quiet chatty third-party loggers."""
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('requests').setLevel(logging.WARNING)
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)

    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.pool').setLevel(logging.WARNING)

    # One line per tick is plenty even at DEBUG
    logging.getLogger('nodepilot.services.schedule_evaluator').setLevel(max(default_level, logging.INFO))

    logging.getLogger('uvicorn.access').setLevel(logging.INFO)


# =============================================================================
# CONTEXT MANAGERS AND UTILITIES
# =============================================================================

# Fields for the current task or thread; each asyncio task sees its own copy
_log_context: ContextVar[Dict[str, Any]] = ContextVar('nodepilot_log_context', default={})
_context_factory_installed = False


def _install_context_factory() -> None:
    """Wrap the record factory once so records pick up the active LogContext fields."""
    global _context_factory_installed
    if _context_factory_installed:
        return

    base_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = base_factory(*args, **kwargs)
        for key, value in _log_context.get().items():
            setattr(record, key, value)
        return record

    logging.setLogRecordFactory(record_factory)
    _context_factory_installed = True


class LogContext:
    """
    Context manager that adds fields to every log record created inside it.

    The fields are scoped to the current asyncio task (or thread), so
    requests served while a tick is running are not tagged with its id.

    Usage:
        with LogContext(tick_id="a1b2c3d4"):
            logger.info("Evaluating schedules")
    """

    def __init__(self, **context):
        self.context = context
        self._token = None

    def __enter__(self):
        _install_context_factory()
        self._token = _log_context.set({**_log_context.get(), **self.context})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        _log_context.reset(self._token)
        self._token = None


def log_performance_metrics(
    logger: logging.Logger,
    operation: str,
    duration: float,
    **metrics
) -> None:
    """
    Log a standardized performance line for an operation.

    Each metric is attached to the record as a `metric_<name>` field so the
    structured formatter emits it as data.

    Args:
        logger: Logger to use
        operation: Name of the operation
        duration: Duration in seconds
        **metrics: Additional metrics to log
    """
    metrics_data = {
        'operation': operation,
        'duration_seconds': duration,
        **metrics
    }

    logger.info(
        f"Performance: {operation} completed in {duration:.3f}s",
        extra={f"metric_{key}": value for key, value in metrics_data.items()}
    )


# =============================================================================
# MONITORING INTEGRATION
# =============================================================================

def is_alert_record(record: logging.LogRecord) -> bool:
    """A record is alert-worthy when it is CRITICAL or carries `alert=True`."""
    return record.levelno >= logging.CRITICAL or bool(getattr(record, 'alert', False))


class WebhookAlertHandler(logging.Handler):
    """
    Posts alert-worthy records to a chat-style webhook.

    The post is a blocking HTTP call. `setup_error_alerting` runs this
    handler behind a QueueListener so it never executes on the event loop.
    """

    def __init__(self, webhook_url: str, timeout: float = 5.0):
        super().__init__(level=logging.WARNING)
        self.webhook_url = webhook_url
        self.timeout = timeout

    def filter(self, record: logging.LogRecord) -> bool:
        return is_alert_record(record)

    def build_message(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            "text": f"NodePilot alert: {record.levelname}",
            "attachments": [{
                "color": "danger" if record.levelno >= logging.ERROR else "warning",
                "fields": [
                    {"title": "Message", "value": record.getMessage(), "short": False},
                    {"title": "Logger", "value": record.name, "short": True},
                    {"title": "Time", "value": datetime.fromtimestamp(record.created).isoformat(), "short": True}
                ]
            }]
        }

    def emit(self, record: logging.LogRecord) -> None:
        try:
            requests.post(self.webhook_url, json=self.build_message(record), timeout=self.timeout)
        except requests.RequestException:
            self.handleError(record)


def setup_error_alerting(webhook_url: Optional[str] = None) -> Optional[logging.handlers.QueueListener]:
    """
    Forward alert records to a webhook from a background thread.

    The root logger gets a QueueHandler that only enqueues alert-worthy
    records; a QueueListener thread hands them to a WebhookAlertHandler.

    Args:
        webhook_url: Webhook URL for alerts (defaults to ALERT_WEBHOOK_URL)

    Returns:
        The running listener, or None when no webhook is configured.
        Pass it to `shutdown_error_alerting` on exit.
    """
    webhook_url = webhook_url or get_settings().alert_webhook_url
    if not webhook_url:
        return None

    alert_queue = queue.Queue(-1)

    queue_handler = logging.handlers.QueueHandler(alert_queue)
    queue_handler.setLevel(logging.WARNING)
    queue_handler.addFilter(is_alert_record)

    listener = logging.handlers.QueueListener(
        alert_queue, WebhookAlertHandler(webhook_url), respect_handler_level=True
    )
    listener.start()

    logging.getLogger().addHandler(queue_handler)
    logging.getLogger(__name__).info("Alert webhook configured")
    return listener


def shutdown_error_alerting(listener: Optional[logging.handlers.QueueListener]) -> None:
    """Detach the alert queue handler and flush pending alerts."""
    if listener is None:
        return

    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        if isinstance(handler, logging.handlers.QueueHandler) and handler.queue is listener.queue:
            root_logger.removeHandler(handler)

    listener.stop()
