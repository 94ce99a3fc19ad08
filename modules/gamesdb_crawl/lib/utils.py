from __future__ import annotations

import os
import re
from datetime import datetime, timezone
from typing import Any


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def now_iso() -> str:
    """
    UTC ISO-8601 timestamp with 'Z' suffix.
    """
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def slugify(s: str) -> str:
    """Filesystem-safe lowercase label, e.g. 'NES games' -> 'nes_games'."""
    s = re.sub(r"[^0-9a-zA-Z]+", "_", (s or "").lower())
    return re.sub(r"_{2,}", "_", s).strip("_")


def clean_cell(value: Any) -> str:
    """Stringify a record value; None becomes '' and line breaks become spaces."""
    if value is None:
        return ""
    return re.sub(r"\r\n|\r|\n", " ", str(value))


def getenv_str(name: str, default: str | None = None) -> str | None:
    """
    Typed wrapper for environment access.
    """
    val = os.getenv(name)
    return val if val is not None else default


def terminate_torn_line(path: str) -> None:
    """If a crash left the file without a final newline, add one before appending."""
    try:
        with open(path, "rb+") as f:
            f.seek(0, os.SEEK_END)
            if f.tell() == 0:
                return
            f.seek(-1, os.SEEK_END)
            if f.read(1) != b"\n":
                f.write(b"\n")
    except FileNotFoundError:
        return
