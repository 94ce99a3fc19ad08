# tests/test_checkpoint.py
import json
import sqlite3
import threading

import pytest

from modules.gamesdb_crawl.lib.checkpoint import (
    JsonlCheckpointStore,
    SqliteCheckpointStore,
    open_store,
)


# ----------------------------------------------------------------------
# 1. Contract shared by both backends
# ----------------------------------------------------------------------
def test_record_load_and_query(any_store):
    assert len(any_store.load("nes")) == 0

    assert any_store.record_completed("nes", "1", {"identifier": "1", "Title": "A"}) is True
    assert any_store.record_completed("nes", "2", {"identifier": "2"}) is True

    state = any_store.load("nes")
    assert state.completed == {"1", "2"}
    assert "1" in state and "3" not in state
    assert any_store.is_completed("nes", "2")
    assert not any_store.is_completed("nes", "3")
    assert any_store.completed_count("nes") == 2


def test_recording_twice_is_idempotent(any_store):
    assert any_store.record_completed("nes", "7") is True
    assert any_store.record_completed("nes", "7") is False
    assert any_store.completed_count("nes") == 1


def test_targets_are_isolated(any_store):
    any_store.record_completed("nes", "1")
    any_store.record_completed("snes", "1")
    any_store.record_completed("snes", "2")

    assert any_store.load("nes").completed == {"1"}
    assert any_store.load("snes").completed == {"1", "2"}
    assert not any_store.is_completed("nes", "2")


def test_concurrent_writers_are_serialized(any_store):
    def writer(start):
        for i in range(start, start + 25):
            any_store.record_completed("nes", str(i))

    threads = [threading.Thread(target=writer, args=(k * 25,)) for k in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert any_store.load("nes").completed == {str(i) for i in range(100)}


# ----------------------------------------------------------------------
# 2. Durability across instances (a "restart")
# ----------------------------------------------------------------------
def test_sqlite_survives_reopen(tmp_path):
    path = str(tmp_path / "cp.db")
    SqliteCheckpointStore(path).record_completed("nes", "42", {"identifier": "42", "Title": "Zelda"})

    reopened = SqliteCheckpointStore(path)
    assert reopened.is_completed("nes", "42")
    assert list(reopened.iter_records("nes")) == [{"identifier": "42", "Title": "Zelda"}]

    # committed row is visible to an unrelated connection
    with sqlite3.connect(path) as conn:
        (n,) = conn.execute("SELECT COUNT(*) FROM completed").fetchone()
    assert n == 1


def test_jsonl_survives_reopen_and_writes_one_line_per_completion(tmp_path):
    d = str(tmp_path / "cps")
    store = JsonlCheckpointStore(d)
    store.record_completed("NES games", "1", {"identifier": "1"})
    store.record_completed("NES games", "2", {"identifier": "2"})

    path = store.path_for("NES games")
    assert path.endswith("nes_games.completed.jsonl")
    with open(path, encoding="utf-8") as f:
        lines = [json.loads(x) for x in f]
    assert [x["identifier"] for x in lines] == ["1", "2"]
    assert lines[0]["record"] == {"identifier": "1"}

    assert JsonlCheckpointStore(d).load("NES games").completed == {"1", "2"}


def test_jsonl_ignores_torn_trailing_line_and_keeps_appending(tmp_path):
    d = str(tmp_path / "cps")
    store = JsonlCheckpointStore(d)
    store.record_completed("nes", "1")
    with open(store.path_for("nes"), "a", encoding="utf-8") as f:
        f.write('{"target": "nes", "identif')  # crash mid-write

    restarted = JsonlCheckpointStore(d)
    assert restarted.load("nes").completed == {"1"}

    restarted.record_completed("nes", "2")
    assert JsonlCheckpointStore(d).load("nes").completed == {"1", "2"}


# ----------------------------------------------------------------------
# 3. Factory
# ----------------------------------------------------------------------
def test_open_store_picks_backend(tmp_path):
    assert isinstance(open_store("sqlite", str(tmp_path)), SqliteCheckpointStore)
    assert isinstance(open_store("JSONL", str(tmp_path)), JsonlCheckpointStore)
    with pytest.raises(ValueError):
        open_store("redis", str(tmp_path))
