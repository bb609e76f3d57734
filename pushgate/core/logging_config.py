"""
Structured JSON Logging Configuration

Provides centralized logging configuration with:
- JSON formatted output for machine parsing
- Correlation ID tracking via contextvars
- Optional rotating file output
- Configurable log levels via environment
"""
import logging
import logging.handlers
import contextvars
import re
from datetime import datetime, timezone
from typing import Optional
from pythonjsonlogger import jsonlogger

from pushgate.core.config import get_settings

# Context variable for correlation ID propagation across a send
correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)

# Third-party loggers that are too chatty at INFO/DEBUG
NOISY_LOGGERS = ('httpx', 'httpcore', 'hpack', 'h2')


class CorrelationIdFilter(logging.Filter):
    """
    Logging filter that adds correlation_id to all log records.

    Uses contextvars so every log line emitted while dispatching a single
    notification can be tied together.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


class SanitizingFilter(logging.Filter):
    """
    Filter that sanitizes log messages to prevent log injection attacks.

    Provider error bodies end up in log messages, so CR/LF are flattened.
    """

    DANGEROUS_PATTERNS = [
        (r'\r\n', ' '),
        (r'\n', ' '),
        (r'\r', ' '),
    ]

    def _sanitize(self, value: str) -> str:
        for pattern, replacement in self.DANGEROUS_PATTERNS:
            value = re.sub(pattern, replacement, value)
        return value

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self._sanitize(record.msg)

        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._sanitize(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )

        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter that adds standard fields to all log entries.

    Output format:
    {
        "timestamp": "2025-11-23T10:30:00.000Z",
        "level": "INFO",
        "message": "APNS notification sent successfully",
        "module": "apns_provider",
        "correlation_id": "uuid-here",
        "logger": "pushgate.push.apns_provider",
        ...extra fields...
    }
    """

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get('timestamp'):
            log_record['timestamp'] = datetime.now(timezone.utc).isoformat()

        log_record['level'] = record.levelname
        log_record['module'] = record.module
        log_record['logger'] = record.name
        log_record['correlation_id'] = getattr(record, 'correlation_id', '-')

        if record.funcName:
            log_record['function'] = record.funcName
        if record.lineno:
            log_record['line'] = record.lineno

        if 'message' not in log_record:
            log_record['message'] = record.getMessage()


def setup_logging(
    log_level: Optional[str] = None,
    json_output: Optional[bool] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for processes embedding the gateway.

    Args:
        log_level: Override log level (default from settings.LOG_LEVEL)
        json_output: Override JSON output (default from settings.LOG_JSON)
        log_file: Optional path for a rotating log file

    Returns:
        Root logger configured for the process
    """
    settings = get_settings()
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    use_json = settings.LOG_JSON if json_output is None else json_output

    if use_json:
        formatter = CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s',
            defaults={'correlation_id': '-'}
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=50 * 1024 * 1024,  # 50MB
            backupCount=5,
            encoding='utf-8'
        ))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIdFilter())
        handler.addFilter(SanitizingFilter())
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


def set_correlation_id(correlation_id: str) -> contextvars.Token:
    """
    Set the correlation ID for the current context.

    Returns:
        Token that can be used to reset the context
    """
    return correlation_id_var.set(correlation_id)


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return correlation_id_var.get()


def clear_correlation_id(token: contextvars.Token) -> None:
    """Reset the correlation ID using the token from set_correlation_id."""
    correlation_id_var.reset(token)


def mask_token(device_token: Optional[str], visible: int = 8) -> str:
    """Shorten a device token for logging."""
    if not device_token:
        return "-"
    if len(device_token) <= visible:
        return device_token
    return device_token[:visible] + "..."
