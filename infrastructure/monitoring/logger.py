import json
import logging
import sys
import traceback
from datetime import date, datetime
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from pathlib import Path

FEEDS_LOGGER = 'infrastructure.providers'
SCHEDULER_LOGGER = 'application.services.refresh_scheduler'


class CustomJSONEncoder(json.JSONEncoder):
    def default(self, o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


class JSONFormatter(logging.Formatter):
    """
    Custom formatter that outputs structured JSON logs.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        if hasattr(record, 'extra_data'):
            log_entry['data'] = record.extra_data

        return json.dumps(log_entry, ensure_ascii=False, cls=CustomJSONEncoder)


class AppLogger:
    """
    Centralized logging configuration: console, rotating JSON files, and a
    separate channel for feed fetches and scheduler transitions.
    """
    def __init__(self,
                 log_directory: str = "logs",
                 console_level: str = "INFO",
                 file_level: str = "DEBUG",
                 max_file_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5):
        self.log_directory = Path(log_directory)
        self.console_level = getattr(logging, console_level.upper())
        self.file_level = getattr(logging, file_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count

        self.log_directory.mkdir(parents=True, exist_ok=True)
        self._setup_logging()

    def _setup_logging(self) -> None:
        root_logger = logging.getLogger()
        root_logger.handlers.clear()
        root_logger.setLevel(logging.DEBUG)

        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        root_logger.addHandler(self._console_handler('%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'))
        root_logger.addHandler(self._rotating_handler("system", "app.log", self.file_level))
        root_logger.addHandler(self._rotating_handler("errors", "errors.log", logging.WARNING))
        self._setup_feed_log_handler()

    def _console_handler(self, fmt: str) -> logging.Handler:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.console_level)
        console_handler.setFormatter(logging.Formatter(fmt, datefmt='%H:%M:%S'))
        return console_handler

    def _rotating_handler(self, subdirectory: str, filename: str, level: int) -> logging.Handler:
        log_dir = self.log_directory / subdirectory
        log_dir.mkdir(exist_ok=True)

        handler = RotatingFileHandler(
            log_dir / filename,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
            encoding='utf-8'
        )
        handler.setLevel(level)
        handler.setFormatter(JSONFormatter())
        return handler

    def _setup_feed_log_handler(self) -> None:
        # Adapter and scheduler events go to their own file as well as the root handlers.
        for name in (FEEDS_LOGGER, SCHEDULER_LOGGER):
            feed_logger = logging.getLogger(name)
            feed_logger.handlers.clear()
            feed_logger.addHandler(self._rotating_handler("feeds", "feeds.log", logging.DEBUG))


app_logger: AppLogger | None = None


def configure_logging(log_directory: str = "logs",
                      console_level: str = "INFO",
                      file_level: str = "DEBUG") -> AppLogger:
    global app_logger
    if app_logger is None:
        app_logger = AppLogger(log_directory, console_level, file_level)
    return app_logger
