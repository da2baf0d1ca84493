"""
Secure Logging Module
=====================

Logging helpers that keep key material and message bodies out of logs.

Security Features:
- Redaction of key=value pairs naming secrets, private keys or tokens
- Redaction of long base64 and hex runs (public keys, KEM ciphertexts,
  envelope bodies)
- Rotating log files with size limits
- Optional JSON output for log aggregation
"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Final, Optional, Pattern

if TYPE_CHECKING:
    from pqmessenger.core.config import LoggingConfig


_SENSITIVE_PATTERNS: Final[list[tuple[str, Pattern[str]]]] = [
    ("secret", re.compile(r'(?i)(shared[_-]?secret|secret|private[_-]?key|secret[_-]?key)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("plaintext", re.compile(r'(?i)(plaintext|message[_-]?body)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("token", re.compile(r'(?i)(token|bearer)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    ("password", re.compile(r'(?i)(password|passwd|pwd)\s*[=:]\s*["\']?[^\s"\']+["\']?')),
    # Encoded key material: base64 of 30+ bytes, hex of 16+ bytes
    ("base64_blob", re.compile(r'[A-Za-z0-9+/]{40,}={0,2}')),
    ("hex_blob", re.compile(r'(?i)(?:0x)?[a-f0-9]{32,}')),
]

_REDACTED_TEXT: Final[str] = "[REDACTED]"

_CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_CONSOLE_DATE_FORMAT: Final[str] = "%H:%M:%S"
_FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"
_FILE_DATE_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S"


class SecureLogFilter(logging.Filter):
    """
    Log filter that scrubs key material from records.

    The record is always kept. Its message is rendered with its
    arguments first, then scrubbed, so a redaction can never break the
    format string.
    """

    def __init__(self, name: str = "", additional_patterns: Optional[list[Pattern[str]]] = None) -> None:
        super().__init__(name)
        self._additional_patterns = additional_patterns or []

    def filter(self, record: logging.LogRecord) -> bool:
        # bytes arguments are never rendered
        if isinstance(record.args, tuple):
            record.args = tuple(
                _REDACTED_TEXT if isinstance(arg, (bytes, bytearray, memoryview)) else arg
                for arg in record.args
            )

        if isinstance(record.msg, str):
            record.msg = self._sanitize(record.getMessage())
            record.args = None

        return True

    def _sanitize(self, text: str) -> str:
        result = text
        for name, pattern in _SENSITIVE_PATTERNS:
            result = pattern.sub(f"{name}={_REDACTED_TEXT}", result)
        for pattern in self._additional_patterns:
            result = pattern.sub(_REDACTED_TEXT, result)
        return result


class StructuredLogFormatter(logging.Formatter):
    """Formatter that emits one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class SecureRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that creates its directory and refuses
    path traversal in the log file name.
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
        encoding: str = "utf-8",
    ) -> None:
        if ".." in Path(filename).parts:
            raise ValueError("Log path cannot contain path traversal sequences")

        log_path = Path(filename).resolve()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            str(log_path),
            mode=mode,
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
        )


def _build_file_handler(
    log_file: Path,
    enable_json: bool,
    max_file_size: int,
    backup_count: int,
    secure_filter: SecureLogFilter,
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
) -> logging.Handler:
    handler = SecureRotatingFileHandler(
        filename=log_file,
        maxBytes=max_file_size,
        backupCount=backup_count,
    )
    handler.setLevel(logging.DEBUG)
    if enable_json:
        handler.setFormatter(StructuredLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt or _FILE_FORMAT, datefmt=datefmt or _FILE_DATE_FORMAT))
    handler.addFilter(secure_filter)
    return handler


def _build_console_handler(
    secure_filter: SecureLogFilter,
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(fmt or _CONSOLE_FORMAT, datefmt=datefmt or _CONSOLE_DATE_FORMAT))
    handler.addFilter(secure_filter)
    return handler


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Create a logger with redaction on every handler.

    Args:
        name: Logger name (typically __name__)
        log_dir: Directory for log files; no file handler without one
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Whether to output to stderr
        enable_file: Whether to output to a rotating file
        enable_json: Whether to use JSON format for file output
        max_file_size: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger; an already configured logger is returned as is
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    secure_filter = SecureLogFilter()

    if enable_console:
        logger.addHandler(_build_console_handler(secure_filter))

    if enable_file and log_dir:
        log_file = Path(log_dir) / f"{name.replace('.', '_')}.log"
        logger.addHandler(
            _build_file_handler(log_file, enable_json, max_file_size, backup_count, secure_filter)
        )

    logger.propagate = False
    return logger


def configure_root_logger(
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    fmt: Optional[str] = None,
    datefmt: Optional[str] = None,
) -> None:
    """
    Configure the root logger with redaction.

    Call once at application startup; every ``pqmessenger.*`` logger
    propagates here. fmt and datefmt apply to the console handler and to
    the plain-text file handler; JSON output ignores them.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    secure_filter = SecureLogFilter()

    if enable_console:
        root_logger.addHandler(_build_console_handler(secure_filter, fmt, datefmt))

    if enable_file and log_dir:
        root_logger.addHandler(
            _build_file_handler(
                Path(log_dir) / "pqmessenger.log",
                enable_json,
                max_file_size,
                backup_count,
                secure_filter,
                fmt,
                datefmt,
            )
        )


def configure_from_config(config: LoggingConfig, log_dir: Optional[Path] = None) -> None:
    """Apply a LoggingConfig to the root logger."""
    configure_root_logger(
        log_dir=log_dir,
        level=config.level,
        enable_console=config.enable_console,
        enable_file=config.enable_file,
        enable_json=config.enable_json,
        max_file_size=config.max_file_size_bytes,
        backup_count=config.backup_count,
        fmt=config.format,
        datefmt=config.date_format,
    )
