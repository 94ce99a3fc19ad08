# service/logging_utils.py
"""
Dated JSONL log channels for crawl activity and errors.

Each channel appends to $LOG_DIR/<prefix>-YYYY-MM-DD.jsonl. Settings come from
the environment on every write, so a test can point LOG_DIR elsewhere. Lines
are redacted copies of the record with host/pid under "_meta".
"""
from __future__ import annotations

import contextlib
import datetime as _dt
import json
import os
import socket
from typing import Any

# channel -> (prefix env var, default prefix)
_CHANNELS = {
    "activity": ("ACTIVITY_LOG_PREFIX", "activity"),
    "error": ("ERROR_LOG_PREFIX", "error"),
}

# Key substrings whose values never reach disk (case-insensitive)
_SECRET_MARKERS = ("password", "token", "apikey", "api_key", "secret", "authorization", "cookie", "proxy")
_MASK = "***REDACTED***"

_ORIGIN = {"host": socket.gethostname(), "pid": os.getpid()}


def write_activity_log(record: dict[str, Any]) -> None:
    """Append one record to today's activity file. Raises on I/O errors."""
    _append("activity", record)


def write_error_log(record: dict[str, Any]) -> None:
    _append("error", record)


def log_path(channel: str = "activity") -> str:
    """Today's file for `channel` ("activity" or "error")."""
    env_key, default = _CHANNELS[channel]
    prefix = os.getenv(env_key, default)
    day = _dt.date.today().isoformat()
    return os.path.join(os.getenv("LOG_DIR", "/app/local/logs"), f"{prefix}-{day}.jsonl")


def redact(value: Any) -> Any:
    """Deep copy of `value` with secret-looking keys masked and bearer credentials cut."""
    if isinstance(value, dict):
        return {k: _MASK if _is_secret(k) else redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [redact(v) for v in value]
    if isinstance(value, str) and "bearer " in value.lower():
        return f"{value.split(' ', 1)[0]} {_MASK}"
    return value


def _is_secret(key: Any) -> bool:
    return isinstance(key, str) and any(m in key.lower() for m in _SECRET_MARKERS)


def _append(channel: str, record: dict[str, Any]) -> None:
    line = {**redact(record), "_meta": dict(_ORIGIN)}
    # default=str keeps odd values loggable
    data = (json.dumps(line, ensure_ascii=False, separators=(",", ":"), default=str) + "\n").encode("utf-8")

    path = log_path(channel)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    _rotate_if_full(path)
    # one write on an O_APPEND fd keeps lines whole across threads
    fd = os.open(path, os.O_CREAT | os.O_APPEND | os.O_WRONLY, 0o644)
    try:
        os.write(fd, data)
    finally:
        os.close(fd)


def _rotate_if_full(path: str) -> None:
    """Size rotation via ACTIVITY_LOG_MAX_BYTES (<= 0 disables); dates rotate by name."""
    try:
        limit = int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
    except ValueError:
        return
    if limit <= 0:
        return
    try:
        if os.path.getsize(path) < limit:
            return
    except FileNotFoundError:
        return
    with contextlib.suppress(FileNotFoundError):
        os.replace(path, f"{path}.{_dt.datetime.now():%Y%m%d-%H%M%S}")
