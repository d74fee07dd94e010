"""
Logging setup for the game shell.

Library modules only create module-level loggers; the entry point calls
``setup_logging`` once to attach a readable or JSON handler to the root logger.
"""

from __future__ import annotations

import logging
import sys

from pythonjsonlogger.json import JsonFormatter


class ContextualJsonFormatter(JsonFormatter):
    """JSON formatter that always carries timestamp, level and logger name."""

    def add_fields(self, log_record: dict, record: logging.LogRecord, message_dict: dict) -> None:
        super().add_fields(log_record, record, message_dict)
        if not log_record.get("timestamp"):
            log_record["timestamp"] = self.formatTime(record, self.datefmt)
        if not log_record.get("level"):
            log_record["level"] = record.levelname
        if not log_record.get("logger"):
            log_record["logger"] = record.name


def setup_logging(*, use_json: bool = False, log_level: str = "WARNING") -> None:
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    if use_json:
        formatter: logging.Formatter = ContextualJsonFormatter("%(timestamp)s %(level)s %(logger)s %(message)s")
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    level = getattr(logging, str(log_level).upper(), None)
    root_logger.setLevel(level if isinstance(level, int) else logging.WARNING)
