"""
Logging setup shared by the API server and the CLI.

Call ``setup_logging()`` once at start-up. Modules just do
``logger = logging.getLogger(__name__)``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from config import LOG_FORMAT, LOG_LEVEL

_NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "openai")

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def setup_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the root logger. Safe to call more than once."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stderr)
    if (fmt or LOG_FORMAT) == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)-7s %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        ))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or LOG_LEVEL)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True
