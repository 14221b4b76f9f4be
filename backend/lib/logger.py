"""
Console Logging for the Tutor Backend

Colored, one-line log records with an icon per area of the tutor
(sessions, problems, chat, assessment, dashboard), plus a small
structured wrapper for request/response and section logging.
"""

import logging
import os
import sys
from datetime import datetime
from typing import Any, Dict, Optional


class Colors:
    """ANSI color codes for terminal output."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    DEBUG = '\033[36m'      # Cyan
    INFO = '\033[32m'       # Green
    WARNING = '\033[33m'    # Yellow
    ERROR = '\033[31m'      # Red
    CRITICAL = '\033[35m'   # Magenta

    KEY = '\033[93m'        # Bright Yellow
    TIMESTAMP = '\033[90m'  # Dark Gray


LEVEL_COLORS = {
    'DEBUG': Colors.DEBUG,
    'INFO': Colors.INFO,
    'WARNING': Colors.WARNING,
    'ERROR': Colors.ERROR,
    'CRITICAL': Colors.CRITICAL,
}


class ColoredFormatter(logging.Formatter):
    """`[12:00:00.123] 💬 INFO     socratic_math_tutor.tutor | message`"""

    LEVEL_ICONS = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️',
        'WARNING': '⚠️',
        'ERROR': '❌',
        'CRITICAL': '🚨',
    }

    # Keyed by the last component of the logger name
    AREA_ICONS = {
        'main': '🌐',
        'session_manager': '💾',
        'problem_processor': '🧮',
        'image_service': '🖼️',
        'socratic_engine': '💬',
        'tutor': '🎓',
        'learning_assessment': '📝',
        'similarity': '🔗',
        'dashboard': '📊',
    }

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors and sys.stdout.isatty()

    def _paint(self, color: str, text: str) -> str:
        return f"{color}{text}{Colors.RESET}" if self.use_colors else text

    def format(self, record: logging.LogRecord) -> str:
        area = record.name.split('.')[-1]
        icon = self.AREA_ICONS.get(area, self.LEVEL_ICONS.get(record.levelname, '•'))
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        formatted = (
            f"{self._paint(Colors.TIMESTAMP, f'[{timestamp}]')} "
            f"{icon} {self._paint(LEVEL_COLORS.get(record.levelname, Colors.RESET), f'{record.levelname:8s}')} "
            f"{self._paint(Colors.BOLD, record.name)} | {record.getMessage()}"
        )

        fields = getattr(record, 'data', None)
        if fields:
            formatted += " " + " ".join(
                f"{self._paint(Colors.KEY, str(key))}={value}"
                for key, value in fields.items()
                if value is not None
            )

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"
        return formatted


class StructuredLogger:
    """Logger wrapper with key=value data and section banners."""

    def __init__(self, name: str, logger: Optional[logging.Logger] = None):
        self.name = name
        self.logger = logger or logging.getLogger(name)

    def section(self, title: str, data: Optional[Dict[str, Any]] = None):
        separator = "=" * 60
        self.logger.info(separator)
        self.logger.info(f"📋 {title.upper()}", extra={"data": data})
        self.logger.info(separator)

    def debug(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.debug(message, extra={"data": data})

    def info(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.info(message, extra={"data": data})

    def warning(self, message: str, data: Optional[Dict[str, Any]] = None):
        self.logger.warning(message, extra={"data": data})

    def error(self, message: str, error: Optional[Exception] = None, data: Optional[Dict[str, Any]] = None):
        """Log an error; the traceback is attached when an exception is given."""
        if error is not None:
            message = f"{message} ({type(error).__name__}: {error})"
        self.logger.error(message, exc_info=error, extra={"data": data})

    def request(self, method: str, path: str):
        self.logger.debug(f"📥 {method} {path}")

    def response(self, status: int, path: str, duration: Optional[float] = None):
        duration_ms = f"{duration * 1000:.1f}" if duration is not None else None
        self.logger.info(f"📤 {status} {path}", extra={"data": {"duration_ms": duration_ms}})


def level_from_env(default: int = logging.INFO) -> int:
    """Read LOG_LEVEL (e.g. DEBUG, INFO) from the environment."""
    name = os.getenv("LOG_LEVEL", "").upper()
    level = logging.getLevelName(name) if name else default
    return level if isinstance(level, int) else default


def setup_logging(level: int = logging.INFO, use_colors: bool = True):
    """Send all records to stdout through the colored formatter."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(ColoredFormatter(use_colors=use_colors))

    root_logger.setLevel(level)
    root_logger.addHandler(console_handler)

    # Suppress noisy loggers
    for noisy in ('asyncio', 'httpx', 'httpcore', 'urllib3', 'openai'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return root_logger


def get_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name, logging.getLogger(name))
