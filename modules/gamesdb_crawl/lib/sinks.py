from __future__ import annotations

import csv
import json
import os
import threading
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, TextIO

from .logging_bridge import activity
from .utils import clean_cell, slugify, terminate_torn_line

_LEADING_COLUMNS = ("identifier", "source_url")


class RecordSink(ABC):
    """
    Append-only destination for finished records.

    Records arrive in completion order, one at a time; each write is flushed
    so a crash leaves every earlier record on disk.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    @abstractmethod
    def write(self, record: Mapping[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self) -> RecordSink:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


class JsonlSink(RecordSink):
    """One JSON object per line (UTF-8)."""

    def __init__(self, path: str):
        super().__init__()
        self.path = path
        os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
        self._fh: TextIO | None = None
        self.written = 0

    def write(self, record: Mapping[str, Any]) -> None:
        line = json.dumps({str(k): ("" if v is None else str(v)) for k, v in record.items()}, ensure_ascii=False)
        with self._lock:
            if self._fh is None:
                terminate_torn_line(self.path)
                self._fh = open(self.path, "a", encoding="utf-8")
            self._fh.write(line + "\n")
            self._fh.flush()
            self.written += 1

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None


class CsvSink(RecordSink):
    """
    Incremental CSV writer.

    Columns: the header already in the file (resumed runs stay aligned),
    else explicit `fieldnames`, else the first record's keys with
    identifier/source_url first. Missing fields are written as "" and line
    breaks inside values become spaces. A record carrying a field the header
    lacks widens the header: the file is rewritten to a temp file with the
    new column appended (earlier rows get "") and swapped in with os.replace.
    """

    def __init__(self, path: str, fieldnames: Sequence[str] | None = None):
        super().__init__()
        self.path = path
        os.makedirs(os.path.dirname(os.path.abspath(path)) or ".", exist_ok=True)
        self.fieldnames: list[str] | None = list(fieldnames) if fieldnames else None
        self._fh: TextIO | None = None
        self._writer: csv.DictWriter | None = None
        self.written = 0

    def write(self, record: Mapping[str, Any]) -> None:
        row = {str(k): clean_cell(v) for k, v in record.items()}
        with self._lock:
            if self._writer is None:
                self._open(row)
            extra = [k for k in row if k not in self._writer.fieldnames]
            if extra:
                self._widen(extra)
            self._writer.writerow(row)
            self._fh.flush()
            self.written += 1

    def _open(self, first_row: Mapping[str, str]) -> None:
        existing = _read_header(self.path)
        if existing:
            columns = existing
        elif self.fieldnames:
            columns = self.fieldnames
        else:
            rest = [k for k in first_row if k not in _LEADING_COLUMNS]
            columns = [*_LEADING_COLUMNS, *rest]
        self.fieldnames = list(columns)
        if existing:
            terminate_torn_line(self.path)
        self._attach(write_header=not existing)

    def _attach(self, *, write_header: bool) -> None:
        self._fh = open(self.path, "a", encoding="utf-8", newline="")
        self._writer = csv.DictWriter(self._fh, fieldnames=self.fieldnames, restval="", extrasaction="raise")
        if write_header:
            self._writer.writeheader()
            self._fh.flush()

    def _widen(self, extra: Sequence[str]) -> None:
        """Append `extra` columns; caller holds the lock."""
        old = list(self.fieldnames or [])
        self.fieldnames = old + list(extra)
        self._fh.close()
        tmp = self.path + ".tmp"
        with open(self.path, encoding="utf-8", newline="") as src, open(tmp, "w", encoding="utf-8", newline="") as dst:
            reader = csv.reader(src)
            next(reader, None)
            writer = csv.writer(dst)
            writer.writerow(self.fieldnames)
            pad = [""] * len(extra)
            for cells in reader:
                if cells:
                    writer.writerow((cells + [""] * (len(old) - len(cells)))[: len(old)] + pad)
            dst.flush()
            os.fsync(dst.fileno())
        os.replace(tmp, self.path)
        self._attach(write_header=False)
        activity({
            "component": "gamesdb_crawl.sinks",
            "op": "widen_header",
            "path": self.path,
            "added": list(extra),
        })

    def close(self) -> None:
        with self._lock:
            if self._fh is not None:
                self._fh.close()
                self._fh = None
                self._writer = None


def _read_header(path: str) -> list[str] | None:
    try:
        with open(path, encoding="utf-8", newline="") as f:
            header = next(csv.reader(f), None)
    except FileNotFoundError:
        return None
    return list(header) if header else None


def open_sink(output_format: str, output_dir: str, target: str, fieldnames: Sequence[str] | None = None) -> RecordSink:
    """Sink for one target at <output_dir>/<slug(target)>.<csv|jsonl>."""
    fmt = (output_format or "csv").strip().lower()
    base = os.path.join(output_dir, slugify(target) or "default")
    if fmt == "csv":
        return CsvSink(base + ".csv", fieldnames=fieldnames)
    if fmt == "jsonl":
        return JsonlSink(base + ".jsonl")
    raise ValueError(f"Unknown output format: {output_format!r}")
