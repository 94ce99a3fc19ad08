from __future__ import annotations

import contextlib
import json
import logging
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from typing import Any

from .logging_bridge import error as log_error
from .logging_bridge import warning as log_warning
from .models import CrawlState
from .utils import now_iso, slugify, terminate_torn_line

log = logging.getLogger(__name__)


class CheckpointStore(ABC):
    """
    Durable set of completed identifiers, scoped per target.

    Contract:
      - load(target) returns everything completed for that target so far.
      - record_completed() is durable when it returns; a crash right after
        still leaves the identifier completed on restart.
      - Mutations are serialized internally; callers may be many threads.
      - Targets never share state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @abstractmethod
    def load(self, target: str) -> CrawlState:
        raise NotImplementedError

    @abstractmethod
    def record_completed(self, target: str, identifier: str, record: Mapping[str, Any] | None = None) -> bool:
        """Persist one completion. Returns True if it was not already recorded."""
        raise NotImplementedError

    @abstractmethod
    def is_completed(self, target: str, identifier: str) -> bool:
        raise NotImplementedError

    def completed_count(self, target: str) -> int:
        return len(self.load(target))

    def close(self) -> None:
        pass

    def __enter__(self) -> CheckpointStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ---- SQLite ------------------------------------------------------------------


class SqliteCheckpointStore(CheckpointStore):
    """
    One row per (target, identifier); INSERT OR IGNORE committed per call.
    The record JSON is kept so completed rows can be re-exported.
    """

    def __init__(self, sqlite_path: str):
        super().__init__()
        self.sqlite_path = sqlite_path
        _ensure_dir(sqlite_path)
        with contextlib.closing(_connect(sqlite_path)) as conn:
            _apply_pragmas(conn)
            _ensure_schema(conn)

    def load(self, target: str) -> CrawlState:
        with self._lock, contextlib.closing(_connect(self.sqlite_path)) as conn:
            rows = conn.execute(
                "SELECT identifier FROM completed WHERE target = ?",
                (target,),
            ).fetchall()
        return CrawlState(target=target, completed={r[0] for r in rows})

    def record_completed(self, target: str, identifier: str, record: Mapping[str, Any] | None = None) -> bool:
        payload = json.dumps(dict(record or {}), ensure_ascii=False, sort_keys=True)
        try:
            with self._lock, contextlib.closing(_connect(self.sqlite_path)) as conn:
                _apply_pragmas(conn)
                cur = conn.cursor()
                cur.execute("BEGIN IMMEDIATE")
                cur.execute(
                    """
                    INSERT OR IGNORE INTO completed (target, identifier, completed_utc, record_json)
                    VALUES (?, ?, ?, ?)
                    """,
                    (target, str(identifier), now_iso(), payload),
                )
                inserted = cur.rowcount == 1
                conn.commit()
        except Exception as e:
            log_error({
                "component": "gamesdb_crawl.checkpoint",
                "op": "record_completed",
                "sqlite_path": self.sqlite_path,
                "target": target,
                "identifier": str(identifier),
                "error": repr(e),
            })
            raise
        return inserted

    def is_completed(self, target: str, identifier: str) -> bool:
        with self._lock, contextlib.closing(_connect(self.sqlite_path)) as conn:
            row = conn.execute(
                "SELECT 1 FROM completed WHERE target = ? AND identifier = ?",
                (target, str(identifier)),
            ).fetchone()
        return row is not None

    def completed_count(self, target: str) -> int:
        with self._lock, contextlib.closing(_connect(self.sqlite_path)) as conn:
            (n,) = conn.execute("SELECT COUNT(*) FROM completed WHERE target = ?", (target,)).fetchone()
        return int(n or 0)

    def iter_records(self, target: str) -> Iterator[dict[str, str]]:
        """Stored records for a target, oldest completion first."""
        with self._lock, contextlib.closing(_connect(self.sqlite_path)) as conn:
            rows = conn.execute(
                "SELECT record_json FROM completed WHERE target = ? ORDER BY id",
                (target,),
            ).fetchall()
        for (raw,) in rows:
            yield json.loads(raw or "{}")


def _ensure_dir(path: str) -> None:
    d = os.path.dirname(os.path.abspath(path)) or "."
    os.makedirs(d, exist_ok=True)


def _connect(sqlite_path: str) -> sqlite3.Connection:
    # isolation_level=None gives autocommit mode; transactions are explicit.
    return sqlite3.connect(sqlite_path, timeout=30.0, isolation_level=None, check_same_thread=False)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA temp_store=MEMORY;")


def _ensure_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS completed (
          id INTEGER PRIMARY KEY,
          target TEXT NOT NULL,
          identifier TEXT NOT NULL,
          completed_utc TEXT NOT NULL,
          record_json TEXT NOT NULL DEFAULT '{}'
        );
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS ux_completed_target_identifier
          ON completed (target, identifier);
        """
    )


# ---- Append-only log ---------------------------------------------------------


class JsonlCheckpointStore(CheckpointStore):
    """
    One append-only log per target: <directory>/<slug>.completed.jsonl.

    Each completion is a single line, flushed and fsynced before returning.
    load() replays the log; a torn last line from a crash is skipped.
    """

    def __init__(self, directory: str):
        super().__init__()
        self.directory = directory
        os.makedirs(directory, exist_ok=True)
        self._cache: dict[str, set[str]] = {}

    def path_for(self, target: str) -> str:
        return os.path.join(self.directory, f"{slugify(target) or 'default'}.completed.jsonl")

    def load(self, target: str) -> CrawlState:
        with self._lock:
            completed = set(self._replay(target))
            self._cache[target] = completed
            return CrawlState(target=target, completed=set(completed))

    def record_completed(self, target: str, identifier: str, record: Mapping[str, Any] | None = None) -> bool:
        ident = str(identifier)
        with self._lock:
            known = self._known(target)
            if ident in known:
                return False
            line = json.dumps(
                {"target": target, "identifier": ident, "completed_utc": now_iso(), "record": dict(record or {})},
                ensure_ascii=False,
            )
            path = self.path_for(target)
            try:
                terminate_torn_line(path)
                with open(path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
                    f.flush()
                    os.fsync(f.fileno())
            except Exception as e:
                log_error({
                    "component": "gamesdb_crawl.checkpoint",
                    "op": "record_completed",
                    "path": path,
                    "target": target,
                    "identifier": ident,
                    "error": repr(e),
                })
                raise
            known.add(ident)
            return True

    def is_completed(self, target: str, identifier: str) -> bool:
        with self._lock:
            return str(identifier) in self._known(target)

    def _known(self, target: str) -> set[str]:
        # Caller holds the lock.
        if target not in self._cache:
            self._cache[target] = set(self._replay(target))
        return self._cache[target]

    def _replay(self, target: str) -> Iterator[str]:
        path = self.path_for(target)
        if not os.path.exists(path):
            return
        with open(path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                s = line.strip()
                if not s:
                    continue
                try:
                    entry = json.loads(s)
                except json.JSONDecodeError:
                    log_warning({
                        "component": "gamesdb_crawl.checkpoint",
                        "op": "skip_torn_line",
                        "path": path,
                        "line": lineno,
                    })
                    continue
                if entry.get("target", target) != target:
                    continue
                ident = entry.get("identifier")
                if ident is not None:
                    yield str(ident)


def open_store(backend: str, state_dir: str) -> CheckpointStore:
    """Build the configured checkpoint backend rooted at state_dir."""
    kind = (backend or "sqlite").strip().lower()
    if kind == "sqlite":
        return SqliteCheckpointStore(os.path.join(state_dir, "checkpoints.db"))
    if kind == "jsonl":
        return JsonlCheckpointStore(os.path.join(state_dir, "checkpoints"))
    raise ValueError(f"Unknown checkpoint backend: {backend!r}")
