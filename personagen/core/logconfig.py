"""Logger setup with JSON and text formatters."""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER = "personagen"


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        subject = getattr(record, "subject", None)
        if subject:
            entry["subject"] = subject
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s [%(levelname)-8s] %(name)s: %(message)s")


def configure_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """Attach a single stream handler to the ``personagen`` logger.

    Calling it again replaces the handler, so ``create_app`` can run more than
    once in a process (tests do).
    """

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(logger.handlers):
        if getattr(handler, "_personagen", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if log_format == "json" else TextFormatter())
    handler._personagen = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
