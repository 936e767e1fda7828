"""
Structured logging for feedgate

Every pipeline module logs through the "feedgate" logger tree. Records are
rendered as one JSON object per line with python-json-logger; fields passed
through ``extra`` (feed_id, run_id, record_id, ...) become top-level keys.
"""
import logging
import os
import sys
import time

from pythonjsonlogger import jsonlogger

ROOT_LOGGER_NAME = "feedgate"
SERVICE_NAME = "feedgate"

JSON_FORMAT = "%(timestamp)s %(level)s %(logger)s %(message)s"
TEXT_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"


class FeedgateJsonFormatter(jsonlogger.JsonFormatter):
    """Adds service, level, logger and source location to every JSON line"""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)

        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["logger"] = record.name
        log_record["service"] = SERVICE_NAME
        log_record["source"] = f"{record.module}:{record.funcName}:{record.lineno}"


def _resolve_level(level: str | None) -> int:
    name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_formatter(format_type: str) -> logging.Formatter:
    if format_type == "text":
        return logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    return FeedgateJsonFormatter(fmt=JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str | None = None,
    format_type: str | None = None,
) -> logging.Logger:
    """
    Configure a logger with a single stdout handler

    Args:
        name: Logger name
        level: Log level (defaults to env var LOG_LEVEL or INFO)
        format_type: "json" or "text" (defaults to env var LOG_FORMAT or json)

    Returns:
        Configured logger instance
    """
    log_level = _resolve_level(level)
    format_type = (format_type or os.getenv("LOG_FORMAT") or "json").lower()

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(_build_formatter(format_type))

    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """
    Return a logger under the feedgate tree

    Module loggers (feedgate.*) carry no handler of their own and propagate
    to the "feedgate" logger, which is configured on first use.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        setup_logger(ROOT_LOGGER_NAME)

    logger = logging.getLogger(name)
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logger
    if not logger.handlers:
        return setup_logger(name)
    return logger


class log_operation:
    """
    Log the start and outcome of a pipeline step

    Usage:
        with log_operation("Feed run", logger, feed_id=feed.id, run_id=run.id):
            ...

    Exceptions propagate; the failure line carries error_type and error_message.
    """

    def __init__(self, operation_name: str, logger: logging.Logger | None = None, **context):
        self.operation_name = operation_name
        self.logger = logger or get_logger()
        self.context = context
        self._started: float | None = None

    def _fields(self, **fields) -> dict:
        return {"operation": self.operation_name, **fields, **self.context}

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.info(f"Starting: {self.operation_name}", extra=self._fields())
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = int((time.perf_counter() - self._started) * 1000)

        if exc_type is None:
            self.logger.info(
                f"Completed: {self.operation_name}",
                extra=self._fields(duration_ms=duration_ms, status="success"),
            )
            return False

        self.logger.error(
            f"Failed: {self.operation_name}",
            extra=self._fields(
                duration_ms=duration_ms,
                status="error",
                error_type=exc_type.__name__,
                error_message=str(exc_val),
            ),
            exc_info=(exc_type, exc_val, exc_tb),
        )
        return False
