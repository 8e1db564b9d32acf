from contextvars import ContextVar
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional
import uuid

from configs import AppConfig, app_config

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)


def trace_id_generator() -> str:
    return str(uuid.uuid4().hex)


def init_logging(config: AppConfig | None = None):
    config = config or app_config
    log_handlers: list[logging.Handler] = []
    log_file = config.LOG_FILE
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        log_handlers.append(
            RotatingFileHandler(
                filename=log_file,
                maxBytes=config.LOG_FILE_MAX_SIZE * 1024 * 1024,
                backupCount=config.LOG_FILE_BACKUP_COUNT,
            )
        )

    # Always add StreamHandler to log to console
    sh = logging.StreamHandler(sys.stdout)
    log_handlers.append(sh)

    for handler in log_handlers:
        handler.addFilter(TraceIdFilter())
        handler.setFormatter(TraceIdFormatter(config.LOG_FORMAT, config.LOG_DATEFORMAT))

    logging.basicConfig(level=config.LOG_LEVEL, handlers=log_handlers, force=True)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    log_tz = config.LOG_TZ
    if log_tz:
        from datetime import datetime

        import pytz

        timezone = pytz.timezone(log_tz)

        def time_converter(seconds):
            return datetime.fromtimestamp(seconds, tz=timezone).timetuple()

        for handler in log_handlers:
            handler.formatter.converter = time_converter


class TraceIdFilter(logging.Filter):
    # Makes the trace id of the current logical call available to the format
    # string. Records emitted outside a call get None.
    def filter(self, record):
        trace_id = trace_id_var.get()
        record.trace_id = trace_id
        return True


class TraceIdFormatter(logging.Formatter):
    def format(self, record):
        if not hasattr(record, "trace_id"):
            record.trace_id = ""
        return super().format(record)
