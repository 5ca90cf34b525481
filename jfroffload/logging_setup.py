from __future__ import annotations

import contextlib
import contextvars
import datetime as dt
import json
import logging
import os
import uuid
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterator, Optional

DEFAULT_CATEGORY = "CONFIG"
CATEGORIES = {
    "WATCH",
    "SCAN",
    "STABILITY",
    "UPLOAD",
    "FILES",
    "PIPELINE",
    "JFR",
    "API",
    "CONFIG",
    "ERRORS",
}
NOISY_LOGGERS = ("botocore", "boto3", "s3transfer", "urllib3", "watchdog", "asyncio")
ACCESS_LOGGER_NAME = "jfroffload.access"

_correlation_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def short_uuid() -> str:
    return uuid.uuid4().hex[:8]


def get_correlation_id() -> str:
    return _correlation_id_var.get()


@contextlib.contextmanager
def correlation_context(correlation_id: Optional[str] = None) -> Iterator[str]:
    cid = correlation_id or short_uuid()
    token = _correlation_id_var.set(cid)
    try:
        yield cid
    finally:
        _correlation_id_var.reset(token)


class ContextEnricherFilter(logging.Filter):
    """
    Ensures every LogRecord has:
      - category
      - correlation_id
    """

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if getattr(record, "category", None) not in CATEGORIES:
            record.category = DEFAULT_CATEGORY
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line, for log collectors that parse container stdout."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname.lower(),
            "message": record.getMessage(),
            "category": getattr(record, "category", DEFAULT_CATEGORY),
            "correlation_id": getattr(record, "correlation_id", "-"),
            "logger": record.name,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _level_from_env(name: str, default: str) -> int:
    level_name = os.environ.get(name, default).strip().upper() or default
    if level_name == "WARN":
        level_name = "WARNING"
    return getattr(logging, level_name, getattr(logging, default))


def _build_formatter() -> logging.Formatter:
    if os.environ.get("JFROFFLOAD_LOG_FORMAT", "text").strip().lower() == "json":
        return JsonLineFormatter()
    # Important: do NOT pass datefmt; default includes ",%03d" milliseconds.
    return logging.Formatter(
        fmt=(
            "%(asctime)s | %(levelname)s | %(category)s | cid=%(correlation_id)s | %(name)s | "
            "%(filename)s:%(lineno)d %(funcName)s() | %(message)s"
        )
    )


def setup_logging() -> None:
    """
    Central logging setup.

    Console output always goes to stderr; JFROFFLOAD_LOG_FILE adds a rotating file.
    Calling it again only refreshes levels, so CLI commands and the API factory
    can both call it safely.
    """
    level = _level_from_env("JFROFFLOAD_LOG_LEVEL", "INFO")
    external_level = _level_from_env("JFROFFLOAD_EXTERNAL_LIB_LOG_LEVEL", "WARNING")
    access_level = _level_from_env("JFROFFLOAD_ACCESS_LOG_LEVEL", "INFO")

    root_logger = logging.getLogger()
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    if getattr(root_logger, "_jfroffload_logging_installed", False):
        root_logger.setLevel(level)
        for h in root_logger.handlers:
            h.setLevel(level)
        access_logger.setLevel(access_level)
        for noisy in NOISY_LOGGERS:
            logging.getLogger(noisy).setLevel(external_level)
        return

    root_logger.setLevel(level)
    formatter = _build_formatter()
    enricher = ContextEnricherFilter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.addFilter(enricher)
    root_logger.addHandler(console_handler)

    log_file = os.environ.get("JFROFFLOAD_LOG_FILE", "").strip()
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(enricher)
        root_logger.addHandler(file_handler)

    # Access lines share the console but skip the category columns.
    access_logger.propagate = False
    access_logger.setLevel(access_level)
    access_handler = logging.StreamHandler()
    access_handler.setFormatter(logging.Formatter(fmt="%(asctime)s | %(levelname)s | ACCESS | %(message)s"))
    access_logger.handlers = [access_handler]

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(external_level)
    root_logger._jfroffload_logging_installed = True  # type: ignore[attr-defined]
    logging.getLogger(__name__).debug(
        "Logging installed level=%s log_file=%s",
        logging.getLevelName(level),
        log_file or "-",
        extra={"category": "CONFIG"},
    )


def get_access_logger() -> logging.Logger:
    return logging.getLogger(ACCESS_LOGGER_NAME)
