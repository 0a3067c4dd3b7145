"""
Logging setup for the proxy.

Text logs by default; JSON lines when DEVPROXY_LOG_FORMAT=json. Request IDs
are attached to records through RequestLogger so JSON output can be
correlated per request.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any

TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
LOG_FORMATS = {"text", "json"}

# LogRecord attributes that are not user-supplied extras
_RESERVED_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
    "request_id",
}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Fields: timestamp, level, logger, message, and when present request_id,
    file, function, exception and any extra attributes.
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}"

        log_entry: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_entry["request_id"] = request_id

        if record.pathname:
            log_entry["file"] = f"{record.filename}:{record.lineno}"
        if record.funcName and record.funcName != "<module>":
            log_entry["function"] = record.funcName
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_FIELDS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def is_json_logging_enabled(log_format: str | None = None) -> bool:
    if log_format is None:
        log_format = os.getenv("DEVPROXY_LOG_FORMAT", "text")
    return log_format.strip().lower() == "json"


def setup_logging(
    level: str | None = None,
    log_file: str | None = None,
    log_format: str | None = None,
    force: bool = True,
) -> None:
    """
    Configure the root logger.

    Environment variables (used when the matching argument is None):
    - DEVPROXY_LOG_LEVEL: log level (default: INFO)
    - DEVPROXY_LOG_FORMAT: "text" or "json" (default: text)
    - DEVPROXY_LOG_FILE: optional log file path
    """
    if level is None:
        level = os.getenv("DEVPROXY_LOG_LEVEL", "INFO")
    if log_file is None:
        log_file = os.getenv("DEVPROXY_LOG_FILE")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            print(f"Warning: Could not open log file {log_file}: {e}", file=sys.stderr)

    if is_json_logging_enabled(log_format):
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level.upper(), handlers=handlers, force=force)


class RequestLogger:
    """
    Logger wrapper that stamps every record with a request ID.

    Usage:
        log = RequestLogger(logging.getLogger("devproxy.router"), request_id="abc123")
        log.info("Forwarding request")
    """

    def __init__(self, logger: logging.Logger, request_id: str):
        self.logger = logger
        self.request_id = request_id

    def _log(self, level: int, msg: str, *args, **kwargs):
        extra = kwargs.get("extra", {})
        extra["request_id"] = self.request_id
        kwargs["extra"] = extra
        self.logger.log(level, msg, *args, **kwargs)

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)
