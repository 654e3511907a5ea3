"""Logging setup: rich console output for staff, JSON lines for servers."""

import json
import logging
from datetime import datetime, timezone

from rich.logging import RichHandler

ALERT_LOGGER_NAME = "consult_desk.alerts"

_STANDARD_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """Single-line JSON records, extra={} fields included."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr_name, attr_value in record.__dict__.items():
            if attr_name in _STANDARD_ATTRS or attr_name in log_data:
                continue
            if isinstance(attr_value, (str, int, float, bool, type(None), dict, list)):
                log_data[attr_name] = attr_value
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO", fmt: str = "rich") -> None:
    """Configure the consult_desk logger hierarchy."""
    if fmt == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JSONFormatter())
    else:
        handler = RichHandler(rich_tracebacks=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))

    logger = logging.getLogger("consult_desk")
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level.upper())
    logger.propagate = False


def get_alert_logger() -> logging.Logger:
    """Logger for conditions operators must be paged about."""
    return logging.getLogger(ALERT_LOGGER_NAME)
