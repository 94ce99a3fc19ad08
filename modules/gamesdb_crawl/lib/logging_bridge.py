from __future__ import annotations

import copy
import logging
from typing import Any

from service import logging_utils as _backend

# Keys that should be redacted from structured logs
_REDACT_KEYS = {
    "password",
    "token",
    "apikey",
    "api_key",
    "secret",
    "authorization",
    "auth",
    "bearer",
    "cookie",
}

_activity_log = logging.getLogger("gamesdb_crawl.activity")
_error_log = logging.getLogger("gamesdb_crawl.error")


def _redact_record(record: dict[str, Any]) -> dict[str, Any]:
    """
    Shallow-copy record and redact obvious secret-like fields at top level.
    The file backend applies its own deep redaction on top.
    """
    redacted = copy.copy(record)
    for k in list(redacted.keys()):
        lk = str(k).lower()
        if lk in _REDACT_KEYS or lk.endswith("_secret") or lk.endswith("_token"):
            redacted[k] = "***REDACTED***"
    return redacted


def activity(record: dict[str, Any]) -> None:
    """
    Write an activity record to the JSONL activity log.
    Falls back to stdlib logging if the file write fails.
    """
    payload = _redact_record(record)
    try:
        _backend.write_activity_log(payload)
    except Exception:
        _activity_log.debug("activity log write failed", exc_info=True)
        _activity_log.info(payload)


def warning(record: dict[str, Any]) -> None:
    """
    Activity record tagged level=warning, also echoed to stdlib logging so an
    operator watching the console sees it.
    """
    payload = _redact_record({**record, "level": "warning"})
    _activity_log.warning(payload)
    try:
        _backend.write_activity_log(payload)
    except Exception:
        _activity_log.debug("activity log write failed", exc_info=True)


def error(record: dict[str, Any]) -> None:
    """
    Write an error record to the JSONL error log.
    Falls back to stdlib logging as structured error.
    """
    payload = _redact_record(record)
    try:
        _backend.write_error_log(payload)
    except Exception:
        _error_log.debug("error log write failed", exc_info=True)
        _error_log.error(payload)
