"""
Logging configuration for the keeper.

Two loggers are configured here: the human-readable "keeper" logger and the
"keeper.events" logger, which writes one JSON object per line for every engine
decision (plans, shrinks, skips, submissions, confirmations, requeues).
"""

import json
import logging
import os
import traceback
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict

LOGS_PATH = os.environ.get("LOGS_PATH", "logs/keeper.log")
EVENTS_PATH = os.environ.get("EVENTS_PATH", "logs/keeper_events.jsonl")

EVENT_LOGGER_NAME = "keeper.events"

_log_context: Dict[str, Any] = {}


class DetailedExceptionFormatter(logging.Formatter):
    """Formatter that includes full tracebacks for ERROR and above."""

    def __init__(self) -> None:
        super().__init__()
        self._detailed = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s\n%(exc_info)s")
        self._standard = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if record.levelno >= logging.ERROR:
            record.exc_text = "".join(traceback.format_exception(*record.exc_info)) if record.exc_info else ""
            return self._detailed.format(record)
        return self._standard.format(record)


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if hasattr(value, "hex"):
        return value.hex()
    return str(value)


class JsonLineFormatter(logging.Formatter):
    """Render an event record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "event": record.getMessage(),
        }
        payload.update(_log_context)
        payload.update(getattr(record, "fields", {}))
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["error"] = {"name": type(exc).__name__, "message": str(exc)}
        return json.dumps(payload, default=_json_default)


def setup_logger() -> logging.Logger:
    """
    Set up and configure the keeper logger.

    Returns:
        Configured logger instance with console and file handlers.
    """
    logger = logging.getLogger("keeper")

    if logger.handlers:
        return logger

    logger.setLevel(logging.DEBUG)

    console_handler = logging.StreamHandler()
    Path(LOGS_PATH).parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(LOGS_PATH, mode="a")

    formatter = DetailedExceptionFormatter()
    console_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger


def setup_event_logger() -> logging.Logger:
    """
    Set up the structured event logger.

    Returns:
        Logger writing JSON lines to stdout and to EVENTS_PATH.
    """
    logger = logging.getLogger(EVENT_LOGGER_NAME)

    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    # Keep JSON lines out of the human log handlers on "keeper"
    logger.propagate = False

    console_handler = logging.StreamHandler()
    Path(EVENTS_PATH).parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(EVENTS_PATH, mode="a")

    formatter = JsonLineFormatter()
    console_handler.setFormatter(formatter)
    file_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    logger.addHandler(file_handler)

    return logger


def log_event(event: str, level: int = logging.INFO, exc_info: Any = None, **fields: Any) -> None:
    """
    Emit one structured event.

    Args:
        event: Event name, e.g. "job_plan" or "tx_confirmed".
        level: Logging level for the record.
        exc_info: Optional exception to attach as an "error" object.
        **fields: Event payload. Wei amounts should be passed as strings.
    """
    setup_event_logger().log(level, event, exc_info=exc_info, extra={"fields": fields})


def set_log_context(**context: Any) -> None:
    """Attach fields (run_id, keeper, network, ...) to every following event."""
    _log_context.update(context)


def clear_log_context() -> None:
    _log_context.clear()


def global_exception_handler(exctype: type, value: BaseException, tb: Any) -> None:
    """
    Global exception handler to log uncaught exceptions.

    Args:
        exctype: The type of the exception.
        value: The exception instance.
        tb: A traceback object encapsulating the call stack.
    """
    logger = logging.getLogger("keeper")
    trace_str = "".join(traceback.format_exception(exctype, value, tb))
    logger.critical("Uncaught exception:\n %s", trace_str)
