"""
Central logging configuration for the ledger backend.

- JSON lines when LOG_JSON=1 (log aggregators), plain text otherwise.
- LOG_LEVEL from env (default INFO).
- Ledger services log ids, symbols and counts only. Emails and tokens
  never go into log messages.
"""
import json
import logging
import os
import sys
from typing import Any

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine")


def _json_default(obj: Any):
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    # Decimal amounts and enums end up here
    return str(obj)


class JsonFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S") + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0]:
            payload["exception"] = self.formatException(record.exc_info)
        for key in ("owner_id", "staging_id", "batch_id", "request_id"):
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value
        return json.dumps(payload, default=_json_default)


def _use_json() -> bool:
    return os.getenv("LOG_JSON", "").lower() in ("1", "true", "yes")


def configure_logging() -> None:
    """Install a single stdout handler on the root logger."""
    level = getattr(logging, (os.getenv("LOG_LEVEL") or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for existing in root.handlers[:]:
        root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    if _use_json():
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
