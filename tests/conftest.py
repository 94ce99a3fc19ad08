# tests/conftest.py
import json
import threading
import time
import warnings

import pytest
from freezegun import freeze_time

from modules.gamesdb_crawl.lib import config as crawl_config
from modules.gamesdb_crawl.lib.checkpoint import JsonlCheckpointStore, SqliteCheckpointStore
from modules.gamesdb_crawl.lib.models import FetchError, PageResult, Payload, WorkItem
from modules.gamesdb_crawl.lib.sinks import RecordSink

warnings.filterwarnings("error", category=DeprecationWarning, module="modules\\.gamesdb_crawl.*")

BASE = "https://games.example.test"


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    logs = tmp_path / "logs"
    monkeypatch.setenv("LOG_DIR", str(logs))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.setenv("CRAWL_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("CRAWL_OUTPUT_DIR", str(tmp_path / "out"))
    yield


@pytest.fixture
def frozen_utc():
    with freeze_time("2025-01-01T00:00:00Z"):
        yield


# ---------------------------------------------------------------------
# Fake network
# ---------------------------------------------------------------------
class FakeFetcher:
    """
    Serves canned pages by URL, records every call, and tracks how many
    fetches are in flight at once.

    pages:   {url: text}
    fail:    {url: number of leading attempts that fail} (inf = always)
    delay:   seconds each call holds its slot (to expose concurrency)
    max_attempts: attempts per fetch() before reporting FetchError
    """

    def __init__(self, pages=None, *, fail=None, delay=0.0, max_attempts=1):
        self.pages = dict(pages or {})
        self.fail = dict(fail or {})
        self.delay = delay
        self.max_attempts = max_attempts
        self.calls = []
        self.attempts_by_url = {}
        self._lock = threading.Lock()
        self._in_flight = 0
        self.peak_in_flight = 0
        self.closed = False

    def fetch(self, url):
        with self._lock:
            self.calls.append(url)
            self._in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self._in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            for attempt in range(1, self.max_attempts + 1):
                with self._lock:
                    n = self.attempts_by_url.get(url, 0) + 1
                    self.attempts_by_url[url] = n
                if n > self.fail.get(url, 0) and url in self.pages:
                    return Payload(url=url, effective_url=url, status_code=200, text=self.pages[url], attempts=attempt)
            return FetchError(url=url, cause="simulated failure", attempts=self.max_attempts, status_code=503)
        finally:
            with self._lock:
                self._in_flight -= 1

    def detail_calls(self):
        return [u for u in self.calls if "/game/" in u]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class ListSink(RecordSink):
    """In-memory sink that keeps records in arrival order."""

    def __init__(self):
        super().__init__()
        self.records = []

    def write(self, record):
        with self._lock:
            self.records.append(dict(record))

    def ids(self):
        return sorted((r["identifier"] for r in self.records), key=int)


def json_listing(ids, *, has_next):
    return json.dumps({
        "items": [{"id": i, "url": f"/game/{i}", "title": f"Game {i}"} for i in ids],
        "has_next": has_next,
    })


def json_detail(i, **extra):
    return json.dumps({"name": f"Game {i} (detail)", "players": "1-2", **extra})


def make_site(n_pages=2, per_page=5, *, listing_url=f"{BASE}/list"):
    """Canned JSON site: n_pages listing pages, ids "1".."n_pages*per_page"."""
    pages = {}
    ident = 0
    for p in range(1, n_pages + 1):
        ids = [str(ident + k) for k in range(1, per_page + 1)]
        ident += per_page
        pages[f"{listing_url}?page={p}"] = json_listing(ids, has_next=p < n_pages)
        for i in ids:
            pages[f"{BASE}/game/{i}"] = json_detail(i)
    return pages


@pytest.fixture
def fake_fetcher_cls():
    return FakeFetcher


@pytest.fixture
def list_sink():
    return ListSink()


@pytest.fixture
def site():
    return make_site()


@pytest.fixture
def base_url():
    return BASE


@pytest.fixture
def sqlite_store(tmp_path):
    store = SqliteCheckpointStore(str(tmp_path / "state" / "checkpoints.db"))
    yield store
    store.close()


@pytest.fixture
def jsonl_store(tmp_path):
    store = JsonlCheckpointStore(str(tmp_path / "state" / "checkpoints"))
    yield store
    store.close()


@pytest.fixture(params=["sqlite", "jsonl"])
def any_store(request, tmp_path):
    if request.param == "sqlite":
        store = SqliteCheckpointStore(str(tmp_path / "state" / "checkpoints.db"))
    else:
        store = JsonlCheckpointStore(str(tmp_path / "state" / "checkpoints"))
    yield store
    store.close()


def target_dict(**overrides):
    base = {
        "name": "nes",
        "start_url": f"{BASE}/list",
        "page_extractor": {"kind": "json"},
        "detail_extractor": {"kind": "json"},
        "concurrency": 3,
        "retry_limit": 2,
        "backoff_base": 0,
        "jitter": 0,
        "page_delay": 0,
        "item_delay": 0,
    }
    base.update(overrides)
    return base


@pytest.fixture
def target_factory():
    return target_dict


@pytest.fixture
def site_factory():
    return make_site


@pytest.fixture
def make_settings(tmp_path):
    """Factory for fresh Settings pointed at per-test state/output dirs."""

    def _make(targets=None, **kwargs):
        kw = {
            "targets": targets or [target_dict()],
            "state_dir": str(tmp_path / "state"),
            "output_dir": str(tmp_path / "out"),
        }
        kw.update(kwargs)
        return crawl_config.Settings.from_env_and_kwargs(kw)

    return _make


@pytest.fixture
def stub_page_extractor():
    """Page extractor over 'id,id,...|next' text bodies."""

    def _extract(payload):
        body, _, flag = payload.text.partition("|")
        ids = [s for s in body.split(",") if s]
        return PageResult(items=[WorkItem(identifier=i, url=f"{BASE}/game/{i}") for i in ids], has_next=flag == "next")

    return _extract
