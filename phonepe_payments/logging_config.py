"""
Logging configuration for the PhonePe payments package.

This module provides centralized logging configuration and a redaction filter
so bearer tokens, client secrets and webhook salts never reach log output.
"""

import logging
import logging.handlers
import os
import re
import sys
from pathlib import Path

REDACTED = "***REDACTED***"
VALID_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class SecretRedactor(logging.Filter):
    SECRET_PATTERNS = [
        # Gateway bearer tokens
        re.compile(r"(O-Bearer )[a-zA-Z0-9\-_\.=+/]+", re.IGNORECASE),
        re.compile(r"(Bearer )[a-zA-Z0-9\-_\.=+/]+", re.IGNORECASE),
        re.compile(r"(Authorization: )[^\s,'\"}]+", re.IGNORECASE),
        # OAuth2 form fields and JSON keys
        re.compile(r"(access_token=)[^&\s]+", re.IGNORECASE),
        re.compile(r"(client_secret=)[^&\s]+", re.IGNORECASE),
        re.compile(r"""(['"]access_token['"]\s*:\s*['"])[^'"]+""", re.IGNORECASE),
        re.compile(r"""(['"]client_secret['"]\s*:\s*['"])[^'"]+""", re.IGNORECASE),
        # Webhook salts
        re.compile(r"(salt_key=)[^&\s]+", re.IGNORECASE),
        re.compile(r"""(['"]webhook_salt_key['"]\s*:\s*['"])[^'"]+""", re.IGNORECASE),
        re.compile(r"(/pg/v1/webhook/)[^#\s]+", re.IGNORECASE),
    ]

    @classmethod
    def redact(cls, text: str) -> str:
        for pattern in cls.SECRET_PATTERNS:
            text = pattern.sub(lambda m: m.group(1) + REDACTED, text)
        return text

    @classmethod
    def _redact_arg(cls, arg):
        # Numbers keep their type so %d and %f placeholders still format.
        if arg is None or isinstance(arg, (bool, int, float)):
            return arg
        return cls.redact(str(arg))

    def filter(self, record):
        """Redact sensitive data from log messages and arguments."""
        record.msg = self.redact(str(record.msg))
        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._redact_arg(v) for k, v in record.args.items()}
            else:
                record.args = tuple(self._redact_arg(arg) for arg in record.args)
        return True


class ColoredFormatter(logging.Formatter):
    """Custom formatter that adds colors to log messages."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",  # Reset
    }

    def format(self, record):
        """Format the log record with colors."""
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


def _normalize_level(level: str) -> str:
    level = str(level).upper()
    if level not in VALID_LEVELS:
        logging.warning("Invalid log level %s, defaulting to INFO", level)
        return "INFO"
    return level


def _validate_log_file_path(log_file: str) -> bool:
    """Check that a log file path is usable before attaching a handler to it."""
    try:
        log_path = Path(log_file)
        if log_path.exists() and log_path.is_dir():
            return False
        parent = log_path.parent
        if parent.exists() and not os.access(parent, os.W_OK):
            return False
        return True
    except (OSError, ValueError):
        return False


def _ensure_secret_redactor_on_handlers() -> None:
    """Ensure SecretRedactor filter is applied to all existing root handlers."""
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, SecretRedactor) for f in handler.filters):
            handler.addFilter(SecretRedactor())


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    log_format: str | None = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    use_colors: bool = True,
    clear_handlers: bool = False,
) -> None:
    """Set up logging for the PhonePe payments package."""
    if not isinstance(max_bytes, int) or max_bytes <= 0:
        max_bytes = 10 * 1024 * 1024
    if not isinstance(backup_count, int) or backup_count < 0:
        backup_count = 5

    log_level = getattr(logging, _normalize_level(level))
    log_format = log_format or DEFAULT_FORMAT

    use_colors = use_colors and sys.stderr.isatty()
    console_formatter = ColoredFormatter(log_format) if use_colors else logging.Formatter(log_format)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if clear_handlers:
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(console_formatter)
    console_handler.addFilter(SecretRedactor())
    root_logger.addHandler(console_handler)

    if log_file:
        add_file_handler(log_file, level=level, max_bytes=max_bytes, backup_count=backup_count, log_format=log_format)

    logging.debug("Logging configured - Level: %s, File: %s, Colors: %s", level, log_file or "None", use_colors)


def add_file_handler(
    log_file: str,
    level: str = "INFO",
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    log_format: str | None = None,
) -> logging.Handler:
    """Attach a rotating, redacting file handler to the root logger."""
    if not _validate_log_file_path(log_file):
        logging.error("Invalid log file path: %s", log_file)
        raise ValueError(f"Invalid log file path: {log_file}")

    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    handler.setLevel(getattr(logging, _normalize_level(level)))
    handler.setFormatter(logging.Formatter(log_format or DEFAULT_FORMAT))
    handler.addFilter(SecretRedactor())
    logging.getLogger().addHandler(handler)
    return handler


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the specified name."""
    if not name or not isinstance(name, str) or not name.strip():
        raise ValueError("Logger name must be a non-empty string")
    return logging.getLogger(name)


def set_log_level(level: str, logger_name: str | None = None) -> None:
    """Set the log level for a specific logger or the root logger."""
    log_level = getattr(logging, _normalize_level(level))
    logging.getLogger(logger_name).setLevel(log_level)


def setup_default_logging() -> None:
    """Configure logging from PHONEPE_LOG_* variables unless the host already did."""
    if logging.getLogger().handlers:
        _ensure_secret_redactor_on_handlers()
        return

    try:
        setup_logging(
            level=os.environ.get("PHONEPE_LOG_LEVEL", "INFO"),
            log_file=os.environ.get("PHONEPE_LOG_FILE"),
            use_colors=os.environ.get("PHONEPE_LOG_COLORS", "true").lower() == "true",
        )
    except ValueError as e:
        setup_logging(level="INFO", use_colors=False, clear_handlers=True)
        logging.error("Failed to configure logging: %s. Using console logging only.", e)


setup_default_logging()
