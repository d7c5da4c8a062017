"""Logging setup: readable console output plus JSON log files.

Run-scoped messages carry a ``run_id`` (see ``get_logger``); it is shown
in the console prefix and written as its own field in the JSON files.
"""

import logging
import sys
from datetime import datetime
from pathlib import Path

from pythonjsonlogger import jsonlogger

from catalog_sync.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(run)s] %(message)s"

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")


class RunContextFilter(logging.Filter):
    """Give every record a ``run`` attribute so the console format never fails."""

    def filter(self, record: logging.LogRecord) -> bool:
        run_id = getattr(record, "run_id", None)
        record.run = run_id[:12] if run_id else "-"
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level, source and run fields."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.utcnow().isoformat() + 'Z'
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        log_record.pop('run', None)

        if getattr(record, "run_id", None):
            log_record['run_id'] = record.run_id


def _file_handler(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(base_dir: str | Path | None = None, level: str | None = None) -> logging.Logger:
    """Configure the root logger.

    Args:
        base_dir: Directory that receives ``logs/`` (defaults to the working directory)
        level: Level name overriding ``settings.log_level``

    Returns:
        The configured root logger
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or settings.log_level).upper()))
    root_logger.handlers.clear()

    run_filter = RunContextFilter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    console_handler.addFilter(run_filter)
    root_logger.addHandler(console_handler)

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    for handler in (
        _file_handler(logs_dir / "app.log", logging.DEBUG, json_formatter),
        _file_handler(logs_dir / "error.log", logging.ERROR, json_formatter),
    ):
        handler.addFilter(run_filter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter that merges its context into each record's ``extra``."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **kwargs.get('extra', {})}
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Get a logger that tags its records with context fields.

    Args:
        name: Logger name (usually __name__)
        **context: Fields to attach, e.g. ``run_id=uuid4().hex``

    Returns:
        LoggerAdapter with context
    """
    return LoggerAdapter(logging.getLogger(name), context)
