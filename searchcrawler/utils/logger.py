"""
Logging for the search crawler.

Everything goes to stdout and a rotating log file; errors are also kept in a
separate errors.log next to it. Worker tasks log through a CrawlerLogAdapter
so each record carries the worker (and optionally link/host) it came from.
"""

import logging
import logging.handlers
import json
import sys
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from .config import LoggingConfig

# record attributes a CrawlerLogAdapter may set
CONTEXT_FIELDS = ('worker', 'link', 'host')

# chatty libraries, raised to WARNING
THIRD_PARTY_LEVELS = {
    'aiohttp': logging.WARNING,
    'cassandra': logging.WARNING,
    'redis': logging.WARNING,
    'asyncio': logging.WARNING,
    'tldextract': logging.WARNING,
}

MAIN_LOG_BYTES = 50 * 1024 * 1024
ERROR_LOG_BYTES = 10 * 1024 * 1024


class JSONFormatter(logging.Formatter):
    """One JSON object per line, crawler context included."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Attaches fixed crawler context (worker name etc.) to every record."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        # per-call extra wins over the adapter's context
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs

    def bind(self, **context) -> 'CrawlerLogAdapter':
        """A new adapter with additional context."""
        return CrawlerLogAdapter(self.logger, {**self.extra, **context})


class PerformanceFilter(logging.Filter):
    """Drops connection-level chatter that is useless at crawl scale."""

    def __init__(self, suppress_modules: Optional[list] = None):
        super().__init__()
        self.suppress_modules = tuple(suppress_modules or (
            'aiohttp.access',
            'aiohttp.client',
            'asyncio',
        ))

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(self.suppress_modules):
            return False
        # a busy crawl opens thousands of connections
        if record.levelno == logging.DEBUG and 'connection' in record.getMessage().lower():
            return False
        return True


def _rotating_handler(path: Path, level: int, max_bytes: int, backup_count: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig,
                  enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Configure the root logger from the logging section of the config.

    Args:
        config: Logging configuration
        enable_performance_filtering: Drop noisy connection-level records

    Returns:
        The root logger
    """
    level = getattr(logging, config.level.upper())
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)

    formatter = JSONFormatter() if config.json_format else logging.Formatter(config.format)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(level)
    console.setFormatter(formatter)

    handlers = [
        console,
        _rotating_handler(log_file, logging.DEBUG, MAIN_LOG_BYTES, 5, formatter),
        _rotating_handler(log_file.parent / 'errors.log', logging.ERROR,
                          ERROR_LOG_BYTES, 3, formatter),
    ]

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    for handler in handlers:
        if enable_performance_filtering and handler.level < logging.ERROR:
            handler.addFilter(PerformanceFilter())
        root_logger.addHandler(handler)

    for name, third_party_level in THIRD_PARTY_LEVELS.items():
        logging.getLogger(name).setLevel(third_party_level)

    root_logger.info(f"Logging to {log_file} at {config.level}")
    return root_logger


def get_crawler_logger(name: str, **context) -> CrawlerLogAdapter:
    """Logger for `name` whose records carry the given context fields."""
    return CrawlerLogAdapter(logging.getLogger(name), context)
