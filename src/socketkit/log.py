"""
=============================================================================
LOGGING SETUP
=============================================================================

Library modules only ever do:

    logger = logging.getLogger(__name__)

and never touch handlers. The application entry point (the CLI, or your
own program) calls configure_logging() once.

Two output formats:

    text:  2026-01-01 12:00:00 [INFO] socketkit.tcp.server: [3] Connected
    json:  {"timestamp": "...", "level": "INFO", "logger": "...", ...}

JSON is easier for log aggregators, text is easier for humans.
=============================================================================
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Format each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    level: str = "INFO",
    log_format: str = "text",
    handler: Optional[logging.Handler] = None,
) -> logging.Handler:
    """
    Configure the root logger for a socketkit application.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: "text" or "json".
        handler: Handler to install. Defaults to a stderr StreamHandler.

    Returns:
        The installed handler (useful for tests and for removing it again).
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    if handler is None:
        handler = logging.StreamHandler()

    if log_format == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))

    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    logging.getLogger("socketkit").setLevel(numeric_level)

    return handler
