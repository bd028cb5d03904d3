"""
Logging infrastructure for the GitLab build handler.

Provides structured logging with configurable formats and levels:
- JSON and text formatters
- Sensitive data redaction (OAuth tokens, refresh tokens, secrets)
- Structured context through ``extra={...}``

Example:
    >>> from gitlab_handler.utils.logger import get_logger, setup_logging
    >>> setup_logging(level="DEBUG", format_type="json")
    >>> logger = get_logger(__name__)
    >>> logger.info("Build submitted", extra={"slug": "group/repo"})
"""

import logging
import sys
import json
import re
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Union, List, Pattern
from pathlib import Path
from enum import Enum

try:
    from ..config.settings import settings
except (ImportError, ValueError):
    settings = None


class LogLevel(Enum):
    """Supported logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Supported log formats."""
    JSON = "json"
    TEXT = "text"


class Colors:
    """ANSI color codes for console output."""
    CYAN = '\033[36m'
    GREEN = '\033[32m'
    YELLOW = '\033[33m'
    RED = '\033[31m'
    MAGENTA = '\033[35m'
    RESET = '\033[0m'

    LEVEL_COLORS = {
        LogLevel.DEBUG.value: CYAN,
        LogLevel.INFO.value: GREEN,
        LogLevel.WARNING.value: YELLOW,
        LogLevel.ERROR.value: RED,
        LogLevel.CRITICAL.value: MAGENTA,
    }


# Field names whose values are always redacted
SENSITIVE_FIELDS = {
    'authorization', 'token', 'password', 'secret', 'api_key',
    'access_token', 'refresh_token', 'refreshtoken', 'bearer',
    'credential', 'credentials', 'oauth_token', 'client_secret',
    'private_token', 'webhook_secret', 'gitlab_token',
}

DEFAULT_TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

# Standard log record fields to exclude when copying extra fields
STANDARD_LOG_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName'
}


class SensitiveDataRedactor:
    """
    Redacts credentials from log messages and structured fields.

    Values are redacted when their key names a credential, and free text
    is scanned for bearer headers, token assignments and OAuth form bodies.
    """

    def __init__(self):
        self.redaction_placeholder = "***REDACTED***"
        self.patterns: List[Pattern] = [
            re.compile(r'(?i)(bearer\s+)([a-zA-Z0-9_\-\.]{8,})'),
            re.compile(r'(?i)(private-token["\s]*[:=]["\s]*)([a-zA-Z0-9_\-]+)'),
            re.compile(r'(?i)((?:access_|refresh_)?token["\s]*[:=]["\s]*)([a-zA-Z0-9_\-\.]{8,})'),
            re.compile(r'(?i)(client_secret["\s]*[:=]["\s]*)([^&\s"]+)'),
            re.compile(r'(?i)([?&](?:private_token|access_token|refresh_token)=)([^&\s]+)'),
        ]

    def _is_sensitive_key(self, key: str) -> bool:
        lowered = key.lower()
        return lowered in SENSITIVE_FIELDS or any(sensitive in lowered for sensitive in SENSITIVE_FIELDS)

    def redact_string(self, text: str) -> str:
        """Redact credential-looking substrings from free text."""
        if not isinstance(text, str):
            return text

        redacted = text
        for pattern in self.patterns:
            redacted = pattern.sub(lambda m: f"{m.group(1)}{self.redaction_placeholder}", redacted)
        return redacted

    def redact_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively redact sensitive values in a dictionary."""
        if not isinstance(data, dict):
            return data
        return {key: self.redact_value(str(key), value) for key, value in data.items()}

    def redact_value(self, key: str, value: Any) -> Any:
        """Redact a value based on its key and content."""
        if value is None:
            return value

        if isinstance(value, dict):
            if self._is_sensitive_key(key):
                return self.redaction_placeholder
            return self.redact_dict(value)
        if isinstance(value, (list, tuple)):
            return type(value)(self.redact_value(key, item) for item in value)

        if self._is_sensitive_key(key):
            return self.redaction_placeholder

        if isinstance(value, str):
            return self.redact_string(value)

        return value


_redactor = SensitiveDataRedactor()


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Example output:
        {"level": "INFO", "logger": "gitlab_handler.pipeline",
         "message": "Submitted build", "slug": "group/repo", ...}
    """

    def __init__(self, ensure_ascii: bool = False, sort_keys: bool = True):
        super().__init__()
        self.ensure_ascii = ensure_ascii
        self.sort_keys = sort_keys

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON string."""
        try:
            log_entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
                "module": record.module,
                "function": record.funcName,
                "line": record.lineno,
            }

            for key, value in record.__dict__.items():
                if key not in STANDARD_LOG_FIELDS and key not in log_entry:
                    log_entry[key] = _redactor.redact_value(key, value)

            if record.exc_info:
                log_entry["exception"] = _redactor.redact_string(self.formatException(record.exc_info))

            return json.dumps(
                log_entry,
                default=str,
                ensure_ascii=self.ensure_ascii,
                sort_keys=self.sort_keys
            )
        except Exception as e:
            fallback_entry = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "level": "ERROR",
                "logger": "JSONFormatter",
                "message": f"Failed to format log record: {str(e)}",
                "original_record": str(record)
            }
            return json.dumps(fallback_entry, default=str)


class TextFormatter(logging.Formatter):
    """
    Text formatter for human-readable logging with optional colors.

    Example output:
        [2023-12-01 10:30:45] INFO     gitlab_handler.pipeline:42 - Submitted build
    """

    def __init__(self, use_colors: bool = True, timestamp_format: Optional[str] = None):
        super().__init__()
        self.use_colors = use_colors and hasattr(sys.stdout, "isatty") and sys.stdout.isatty()
        self.timestamp_format = timestamp_format or DEFAULT_TIMESTAMP_FORMAT

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as (optionally colored) text."""
        timestamp = datetime.fromtimestamp(record.created).strftime(self.timestamp_format)
        message = (
            f"[{timestamp}] {record.levelname:8} "
            f"{record.name}:{record.lineno} - {record.getMessage()}"
        )

        if record.exc_info:
            message += f"\n{self.formatException(record.exc_info)}"

        if self.use_colors:
            color = Colors.LEVEL_COLORS.get(record.levelname, '')
            message = f"{color}{message}{Colors.RESET}"

        return message


class SensitiveDataFilter(logging.Filter):
    """
    Filter that sanitizes log messages and extra fields before they
    reach any handler.
    """

    def __init__(self):
        super().__init__()
        self.redactor = _redactor

    def filter(self, record: logging.LogRecord) -> bool:
        """Sanitize sensitive data in the log record."""
        if isinstance(record.msg, str):
            record.msg = self.redactor.redact_string(record.msg)

        for key in list(record.__dict__.keys()):
            if key in STANDARD_LOG_FIELDS:
                continue
            value = getattr(record, key)
            setattr(record, key, self.redactor.redact_value(key, value))

        return True


def validate_log_level(level: str) -> str:
    """
    Validate and normalize log level string.

    Raises:
        ValueError: If the log level is not supported
    """
    if not level:
        raise ValueError("Log level cannot be empty")

    level_upper = level.upper()
    valid_levels = {log_level.value for log_level in LogLevel}

    if level_upper not in valid_levels:
        raise ValueError(f"Invalid log level: {level}. Valid levels: {', '.join(sorted(valid_levels))}")

    return level_upper


def validate_log_format(format_type: str) -> str:
    """
    Validate and normalize log format string.

    Raises:
        ValueError: If the log format is not supported
    """
    if not format_type:
        raise ValueError("Log format cannot be empty")

    format_lower = format_type.lower()
    valid_formats = {log_format.value for log_format in LogFormat}

    if format_lower not in valid_formats:
        raise ValueError(f"Invalid log format: {format_type}. Valid formats: {', '.join(sorted(valid_formats))}")

    return format_lower


def setup_logging(
    level: Optional[Union[str, LogLevel]] = None,
    format_type: Optional[Union[str, LogFormat]] = None,
    log_file: Optional[str] = None,
    use_colors: Optional[bool] = None,
    sanitize_sensitive_data: bool = True,
) -> logging.Logger:
    """
    Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ('json' or 'text')
        log_file: Optional log file path (always written as JSON)
        use_colors: Whether to use colors in text output
        sanitize_sensitive_data: Whether to redact credentials

    Returns:
        Configured root logger
    """
    if isinstance(level, LogLevel):
        level = level.value
    if isinstance(format_type, LogFormat):
        format_type = format_type.value

    level_str = level or (settings.log_level if settings else "INFO")
    format_str = format_type or (settings.log_format if settings else "text")
    log_file_path = log_file or (settings.log_file if settings else None)

    try:
        validated_level = validate_log_level(level_str)
        validated_format = validate_log_format(format_str)
    except ValueError as e:
        validated_level = LogLevel.INFO.value
        validated_format = LogFormat.TEXT.value
        print(f"Warning: {e}. Using fallback settings.", file=sys.stderr)

    numeric_level = getattr(logging, validated_level, logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    filters: List[logging.Filter] = []
    if sanitize_sensitive_data:
        filters.append(SensitiveDataFilter())

    if validated_format == LogFormat.JSON.value:
        console_formatter: logging.Formatter = JSONFormatter()
    else:
        console_formatter = TextFormatter(use_colors=use_colors if use_colors is not None else True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(console_formatter)
    for filter_obj in filters:
        console_handler.addFilter(filter_obj)
    logger.addHandler(console_handler)

    if log_file_path:
        try:
            log_path = Path(log_file_path)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file_path, encoding='utf-8')
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(JSONFormatter())
            for filter_obj in filters:
                file_handler.addFilter(filter_obj)
            logger.addHandler(file_handler)
        except OSError as e:
            print(f"Warning: Failed to create file handler: {e}", file=sys.stderr)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)


__all__ = [
    "LogLevel",
    "LogFormat",
    "SensitiveDataRedactor",
    "SensitiveDataFilter",
    "JSONFormatter",
    "TextFormatter",
    "setup_logging",
    "get_logger",
    "validate_log_level",
    "validate_log_format",
]
