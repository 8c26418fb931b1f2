"""
Ledger logging.

Records from the ``familyquest`` logger tree carry the request_id of the HTTP
request that produced them (or None for scheduler jobs). Production writes one
JSON object per line; development gets a compact human line.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "familyquest"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Record attributes lifted into the JSON line when set
_LEDGER_FIELDS = (
    "user_id",
    "family_id",
    "event_type",
    "error_code",
    "status",
    "path",
    "method",
    "latency_bucket",
)

_LATENCY_EDGES = ((10, "<10ms"), (100, "10-100ms"), (500, "100-500ms"), (1000, "500-1000ms"))

_MAX_FIELD_CHARS = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    """Coarse latency label; exact timings would make log lines unique."""
    if latency_ms is None:
        return "unknown"
    for edge, label in _LATENCY_EDGES:
        if latency_ms < edge:
            return label
    return ">=1000ms"


def _utc_stamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created, timezone.utc)
    return stamp.strftime("%Y-%m-%dT%H:%M:%S.") + f"{stamp.microsecond // 1000:03d}Z"


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = {
            "ts": _utc_stamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        line.update(
            (name, getattr(record, name))
            for name in _LEDGER_FIELDS
            if getattr(record, name, None) is not None
        )
        if record.exc_info:
            line["exc"] = self.formatException(record.exc_info)
        return json.dumps(line, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_utc_stamp(record), record.levelname, f"[{record.name}]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        event = getattr(record, "event_type", None)
        if event:
            parts.append(f"({event})")
        text = " ".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


def configure_logging(env: str = "development", level: int = logging.INFO) -> logging.Logger:
    """Install a single stdout handler on the familyquest logger. Safe to call twice."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())
    logger.handlers = [handler]
    # Let pytest's caplog and any root handlers see ledger records
    logger.propagate = True

    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    return logger


def _clip(value):
    try:
        text = str(value)
    except Exception:
        return "<unprintable>"
    if len(text) > _MAX_FIELD_CHARS:
        return text[:_MAX_FIELD_CHARS] + "...<truncated>"
    return text


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    family_id: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Emit one ledger event with actor ids attached and free-form fields clipped."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        configure_logging(os.getenv("ENV", "development"))

    fields: Dict[str, object] = {name: _clip(value) for name, value in (extra or {}).items()}
    fields.update(
        request_id=request_id or get_request_id(),
        user_id=user_id,
        family_id=family_id,
        event_type=event_type,
        error_code=error_code,
    )
    logger.log(logging.getLevelName(level.upper()), msg, extra=fields)
