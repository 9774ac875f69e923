"""Structured logging for Emoji Gateway services."""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Union

# Context fields copied from `extra=` into JSON output
EXTRA_FIELDS = ("user_id", "note_id", "shortcode", "attempt", "delay", "event", "status")

LEVEL_NAMES = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_default_level = logging.INFO
_default_json = False


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging."""

    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", record.name),
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            log_data["exception"] = self.formatException(record.exc_info)
        for key in EXTRA_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)
        return json.dumps(log_data, ensure_ascii=False, default=str)


def parse_level(level: Union[int, str]) -> int:
    """Map a config level name (debug/info/warn/error) to a logging level."""
    if isinstance(level, int):
        return level
    return LEVEL_NAMES.get(level.lower(), logging.INFO)


def configure_defaults(level: Union[int, str] = logging.INFO, json_output: bool = False) -> None:
    """Set level/format for every gateway logger, including ones already created."""
    global _default_level, _default_json
    _default_level = parse_level(level)
    _default_json = json_output

    root = logging.getLogger("emoji_gateway")
    for name, logger in logging.Logger.manager.loggerDict.items():
        if isinstance(logger, logging.Logger) and (name == "emoji_gateway" or name.startswith("emoji_gateway.")):
            logger.setLevel(_default_level)
            for handler in logger.handlers:
                handler.setLevel(_default_level)
                handler.setFormatter(_make_formatter(name.rsplit(".", 1)[-1], json_output))
    root.setLevel(_default_level)


def _make_formatter(service_name: str, json_output: bool) -> logging.Formatter:
    if json_output:
        return JSONFormatter()
    return logging.Formatter(
        f"%(asctime)s [{service_name}] %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )


def setup_logging(service_name: str, level: Union[int, str, None] = None, json_output: bool = None) -> logging.Logger:
    """Set up logging for a service.

    Args:
        service_name: Name of the service (e.g., "store", "stream")
        level: Logging level; defaults to the level set by configure_defaults()
        json_output: If True, use JSON format. If False, use human-readable format.

    Returns:
        Configured logger
    """
    level = _default_level if level is None else parse_level(level)
    json_output = _default_json if json_output is None else json_output

    logger = logging.getLogger(f"emoji_gateway.{service_name}")
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(_make_formatter(service_name, json_output))
        logger.addHandler(handler)

    return logger
