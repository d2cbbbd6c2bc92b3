from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from backend.app.core.config import get_settings

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonFormatter(logging.Formatter):
    """Une ligne JSON par record; les champs passés via `extra=` sont conservés."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def setup_logging(level: str | None = None) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger("backend")
    logger.setLevel(getattr(logging, level or settings.LOG_LEVEL, logging.INFO))

    # appelé à chaque création d'app (tests): pas de handlers en double
    if not logger.handlers:
        handler = logging.StreamHandler()
        if settings.LOG_JSON:
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
        logger.addHandler(handler)

    return logger
