# modules/gamesdb_crawl/lib/__init__.py
from __future__ import annotations

# Re-export commonly-used types for convenience. Importing `extractors`
# registers the built-in extractor kinds.
from . import extractors as _extractors  # noqa: F401
from .checkpoint import CheckpointStore, JsonlCheckpointStore, SqliteCheckpointStore, open_store
from .config import ConfigError, ExtractorSpec, Settings, TargetConfig
from .engine import CrawlError, PersistenceError, run_once, run_target
from .http_client import HttpClient
from .listing import ListingWalker, build_page_url
from .models import (
    CrawlState,
    CrawlSummary,
    FetchError,
    ItemOutcome,
    ListingReport,
    PageResult,
    Payload,
    Record,
    WorkItem,
    make_record,
)
from .pool import BoundedPool, TaskOutcome
from .retry import LinearRetry, RetryPolicy
from .sinks import CsvSink, JsonlSink, RecordSink, open_sink

__all__ = [
    "BoundedPool",
    "CheckpointStore",
    "ConfigError",
    "CrawlError",
    "CrawlState",
    "CrawlSummary",
    "CsvSink",
    "ExtractorSpec",
    "FetchError",
    "HttpClient",
    "ItemOutcome",
    "JsonlCheckpointStore",
    "JsonlSink",
    "LinearRetry",
    "ListingReport",
    "ListingWalker",
    "PageResult",
    "Payload",
    "PersistenceError",
    "Record",
    "RecordSink",
    "RetryPolicy",
    "Settings",
    "SqliteCheckpointStore",
    "TargetConfig",
    "TaskOutcome",
    "WorkItem",
    "build_page_url",
    "make_record",
    "open_sink",
    "open_store",
    "run_once",
    "run_target",
]
