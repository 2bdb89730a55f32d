"""
Structured logging with dynamic sampling.

Provides JSON structured logging for files and log shippers, an optional
plain console format, and sampling of DEBUG records to keep per-request
cache and oracle tracing from flooding the output.
"""

import json
import logging
import logging.handlers
import random
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
import traceback

_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message'
}


class StructuredFormatter(logging.Formatter):
    """
    Formatter emitting one JSON object per record.

    Extra attributes passed through ``extra=`` are included under ``extra``.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "process_id": record.process,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _RESERVED_ATTRS:
                    continue
                try:
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class SamplingFilter(logging.Filter):
    """
    Lets through only a fraction of DEBUG records.

    Records above DEBUG always pass.
    """

    def __init__(self, sample_rate: float = 0.01, rng: Optional[random.Random] = None):
        super().__init__()
        self.sample_rate = sample_rate
        self._rng = rng or random.Random()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno > logging.DEBUG:
            return True
        return self._rng.random() < self.sample_rate


class ContextFilter(logging.Filter):
    """Adds the active network and command to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        from .context import peek_context

        app_ctx = peek_context()
        if app_ctx is not None:
            record.network = app_ctx.network
            if app_ctx.command_stack:
                record.command = " ".join(app_ctx.command_stack)

        return True


class LoggingManager:
    """
    Sets up handlers from the ``logging`` section of the configuration.

    Recognised keys: ``level``, ``structured``, ``format``,
    ``sampling_rate`` and ``handlers.console`` / ``handlers.file``.
    """

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.handlers = []

    def setup_logging(self) -> None:
        """Set up the complete logging system."""
        log_config = self.config.get('logging', {})

        level = getattr(logging, str(log_config.get('level', 'INFO')).upper())
        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        self.handlers = []
        self._setup_console_handler(log_config)
        self._setup_file_handler(log_config)

        context_filter = ContextFilter()
        for handler in self.handlers:
            handler.addFilter(context_filter)

        sampling_rate = log_config.get('sampling_rate', 1.0)
        if sampling_rate < 1.0:
            sampling_filter = SamplingFilter(sampling_rate)
            for handler in self.handlers:
                if handler.level <= logging.DEBUG:
                    handler.addFilter(sampling_filter)

        for handler in self.handlers:
            root_logger.addHandler(handler)

        logging.getLogger('oracle_pricing').setLevel(level)
        logging.getLogger('aiosqlite').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)

    def _setup_console_handler(self, log_config: Dict[str, Any]) -> None:
        console_config = log_config.get('handlers', {}).get('console', {})

        if not console_config.get('enabled', True):
            return

        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(getattr(logging, str(console_config.get('level', 'INFO')).upper()))

        if log_config.get('structured', False):
            formatter = StructuredFormatter()
        else:
            format_str = log_config.get('format',
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            formatter = logging.Formatter(format_str)

        handler.setFormatter(formatter)
        self.handlers.append(handler)

    def _setup_file_handler(self, log_config: Dict[str, Any]) -> None:
        """Set up file logging handler with rotation."""
        file_config = log_config.get('handlers', {}).get('file', {})

        if not file_config.get('enabled', False):
            return

        log_file = Path(file_config.get('filename', 'logs/oracle_pricing.log'))
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=file_config.get('max_bytes', 10 * 1024 * 1024),  # 10MB
            backupCount=file_config.get('backup_count', 5)
        )
        handler.setLevel(getattr(logging, str(file_config.get('level', 'DEBUG')).upper()))

        # File output is always structured
        handler.setFormatter(StructuredFormatter())
        self.handlers.append(handler)


def setup_logging(config: Dict[str, Any] = None) -> LoggingManager:
    """Configure logging from a configuration tree."""
    manager = LoggingManager(config)
    manager.setup_logging()
    return manager
