from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict

from .config_manager import LabConfig

# Extra attributes copied into the JSON payload when set on a record
EXTRA_FIELDS = ("slot", "state", "command", "path", "exit_code")


class JsonLogFormatter(logging.Formatter):
    """Render log records as JSON lines with sandbox metadata when available."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"
    default_msec_format = "%s.%03dZ"

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - base class contract
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.default_time_format),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                value = getattr(record, name)
                payload[name] = getattr(value, "value", value)

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=True)


def init_logging(config: LabConfig) -> logging.Handler:
    """Send the package's log records to the JSON log file."""

    log_dir = os.path.dirname(config.log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    handler = logging.FileHandler(config.log_file)
    handler.setFormatter(JsonLogFormatter())

    package_logger = logging.getLogger("nasvm")
    for existing in list(package_logger.handlers):
        package_logger.removeHandler(existing)
        existing.close()
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    # Operator output goes through nasvm.console, keep records off stderr
    package_logger.propagate = False

    return handler
