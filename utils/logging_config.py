import logging
import os
import time
from typing import Optional

from pythonjsonlogger import jsonlogger
from rich.console import Console
from rich.logging import RichHandler

from utils.time import get_now_utc


class ThrottledRichHandler(RichHandler):
    """
    Throttled console handler - limits INFO/DEBUG to min_interval seconds.
    ERROR/CRITICAL always pass through immediately.
    """
    def __init__(self, min_interval: float = 5, **kwargs):
        super().__init__(**kwargs)
        self.min_interval = min_interval
        self._last_emit_time = 0.0
        self._buffer = []

    def emit(self, record):
        if record.levelno >= logging.ERROR or self.min_interval <= 0:
            super().emit(record)
            return

        now = time.time()
        if now - self._last_emit_time >= self.min_interval:
            for buffered_record in self._buffer:
                super().emit(buffered_record)
            self._buffer.clear()
            super().emit(record)
            self._last_emit_time = now
        elif len(self._buffer) < 100:
            self._buffer.append(record)


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """One JSON object per record; UTC timestamp, upper-case level, component name."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = get_now_utc().isoformat()
        log_record["level"] = (log_record.get("level") or record.levelname).upper()
        log_record["component"] = record.name

        if record.levelno >= logging.ERROR and record.exc_info:
            log_record["stack_trace"] = self.formatException(record.exc_info)


def _jsonl_handler(path: str, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_dir: str = "runtime/logs",
    level: int = logging.INFO,
    console_interval: float = 5,
    name: Optional[str] = None
) -> logging.Logger:
    """
    Setup logging with three sinks:
    1. Console: Rich (human readable, throttled)
    2. File: live.jsonl (machine readable, all records at `level`+)
    3. File: errors.jsonl (machine readable, ERROR+)

    Configures the root logger by default so every component logger
    (DECISION_ENGINE, EXIT_SIM, ...) reaches the sinks.
    """
    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Clear existing handlers to avoid duplicates during reload
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = ThrottledRichHandler(
        min_interval=console_interval,
        console=console,
        show_time=True,
        show_level=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False
    )
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter('%(name)s %(message)s'))
    logger.addHandler(console_handler)

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(message)s")
    logger.addHandler(_jsonl_handler(os.path.join(log_dir, "live.jsonl"), level, json_formatter))
    logger.addHandler(_jsonl_handler(os.path.join(log_dir, "errors.jsonl"), logging.ERROR, json_formatter))

    if name is not None:
        logger.propagate = False

    return logger


console = Console(stderr=True)
