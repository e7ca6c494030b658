"""
Structured Logging Configuration

This module configures structured logging using the 'structlog' library.
It sets up processors for adding timestamps, log levels, correlation IDs
(the id of the call session being handled), and renders logs in JSON
(default) or colorized console format based on env.
"""

import os
import logging
import sys
import contextvars
import uuid
import time

import structlog
from structlog import dev as structlog_dev
from logging.handlers import RotatingFileHandler

SERVICE_NAME = "tts-agi"

# Context variable for correlation ID (one per call session)
correlation_id_var = contextvars.ContextVar('correlation_id', default=None)

SENSITIVE_KEYS = {
    'api_key', 'apikey', 'token', 'access_token', 'auth_token', 'bearer',
    'password', 'passwd', 'pwd', 'authorization', 'secret', 'credential',
}


def get_correlation_id():
    """Get the current correlation ID."""
    return correlation_id_var.get()


def set_correlation_id(value=None):
    """Set the correlation ID and return the token needed to restore it."""
    if value is None:
        value = str(uuid.uuid4())
    return correlation_id_var.set(value)


def reset_correlation_id(token) -> None:
    correlation_id_var.reset(token)


def add_correlation_id(logger, method_name, event_dict):
    """Add correlation ID to the log record."""
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict['correlation_id'] = correlation_id
    return event_dict


def add_service_context(logger, method_name, event_dict):
    """Add service context to the log record."""
    event_dict['service'] = SERVICE_NAME
    component = event_dict.get('logger')
    if not component:
        component = getattr(getattr(logger, 'logger', None), 'name', None) or getattr(logger, 'name', 'unknown')
    event_dict['component'] = component
    return event_dict


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact sensitive values from log events.

    Keys are compared after removing separators, so 'api-key', 'api_key' and
    'sip_password' all match. Strings keep their first two characters.
    """
    def is_sensitive(key) -> bool:
        normalized = str(key).lower().replace('_', '').replace('-', '')
        for pattern in SENSITIVE_KEYS:
            pattern_normalized = pattern.replace('_', '')
            if normalized == pattern_normalized or normalized.endswith(pattern_normalized):
                return True
        return False

    def redact(value):
        if value is None or isinstance(value, bool):
            return value
        if isinstance(value, str):
            if not value:
                return ''
            if len(value) > 4:
                return f"{value[:2]}***REDACTED***"
        return "***REDACTED***"

    def sanitize(d):
        sanitized = {}
        for key, value in d.items():
            if is_sensitive(key):
                sanitized[key] = redact(value)
            elif isinstance(value, dict):
                sanitized[key] = sanitize(value)
            else:
                sanitized[key] = value
        return sanitized

    return sanitize(event_dict)


def configure_logging(log_level="INFO", log_to_file=False, log_file_path="tts-agi.log"):
    """
    Set up structured logging.

    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical (default: INFO)
      - LOG_FORMAT: json|console (default: json)
      - LOG_COLOR:  0|1 (console only; default: 1)
      - LOG_TO_FILE: 0|1 (default: 0)
      - LOG_FILE_PATH: path (default: tts-agi.log)
    """
    env_level = os.getenv("LOG_LEVEL")
    if env_level:
        log_level = env_level.upper()
    if os.getenv("LOG_TO_FILE") is not None:
        log_to_file = os.getenv("LOG_TO_FILE", "0").strip() in ("1", "true", "True")
    log_file_path = os.getenv("LOG_FILE_PATH", log_file_path)
    log_format = os.getenv("LOG_FORMAT", "json").strip().lower()
    log_color = os.getenv("LOG_COLOR", "1").strip() not in ("0", "false", "False")

    log_level_upper = log_level.upper() if isinstance(log_level, str) else str(log_level)
    if isinstance(log_level, str):
        level_value = getattr(logging, log_level_upper, logging.INFO)
    else:
        level_value = int(log_level)

    # Tracebacks only at debug level
    show_tracebacks = level_value <= logging.DEBUG

    def suppress_exc_info_if_disabled(logger, method_name, event_dict):
        if not show_tracebacks and event_dict.get("exc_info"):
            event_dict.pop("exc_info", None)
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_context,
            add_correlation_id,
            sanitize_secrets,
            suppress_exc_info_if_disabled,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = structlog_dev.ConsoleRenderer(colors=log_color) if log_format == "console" else structlog.processors.JSONRenderer()

    processor_formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level_value)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(processor_formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        path = log_file_path.replace("{ts}", time.strftime("%Y%m%d-%H%M%S"))
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(processor_formatter)
            root_logger.addHandler(file_handler)
        except OSError as e:
            # Fall back to console-only if file logging fails
            get_logger(__name__).warning(
                "File logging disabled due to error; continuing with console only",
                error=str(e),
                configured_path=log_file_path,
            )

    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def get_logger(name: str):
    """Get a structlog logger."""
    return structlog.get_logger(name)
