"""
Crawl orchestrator: listing -> dedupe against checkpoint -> bounded fetch pool
-> sink + checkpoint, one target at a time.

Per target:
  1. Init       load CrawlState for the target
  2. Enumerate  walk the listing (partial enumeration is reported, not fatal)
  3. Filter     drop repeated identifiers and ones already completed
  4. Execute    fetch + extract each item under the concurrency budget
  5. Persist    per completion: sink first, then checkpoint; failures are
                logged and left unchecked so the next run retries them
  6. Finalize   summary counts returned and logged

Only a persistence failure (store or sink raising) stops the run.
"""

from __future__ import annotations

import contextlib
import threading
import time
from collections.abc import Callable
from typing import Any

from . import logging_bridge
from .checkpoint import CheckpointStore, open_store
from .config import ExtractorSpec, Settings, TargetConfig
from .extractors.base import DetailExtractor, PageExtractor
from .http_client import HttpClient
from .listing import Fetcher, ListingWalker
from .models import CrawlSummary, FetchError, ItemOutcome, WorkItem, make_record, unique_items
from .pool import BoundedPool, TaskOutcome
from .retry import RetryPolicy
from .sinks import RecordSink, open_sink

_COMPONENT = "gamesdb_crawl.engine"


class CrawlError(Exception):
    """Base class for run-level crawl failures."""


class PersistenceError(CrawlError):
    """Checkpoint or sink write failed; continuing would lose completed work."""


# =============================================================================
# DEFAULT COLLABORATORS (PRODUCTION)
# =============================================================================
def _default_get_extractor(role: str, kind: str) -> type:
    """
    Resolve an extractor class from the registry. Only used when no
    `get_extractor` override is provided.
    """
    from .extractors import registry

    if role == "page":
        return registry.get_page_extractor(kind)
    return registry.get_detail_extractor(kind)


def build_fetcher(target: TargetConfig) -> HttpClient:
    """HttpClient sized and configured for one target."""
    retry = RetryPolicy(
        max_attempts=target.retry_limit,
        backoff_base=target.backoff_base,
        jitter=target.jitter,
    )
    kwargs: dict[str, Any] = {}
    if target.user_agent:
        kwargs["user_agent"] = target.user_agent
    return HttpClient(
        timeout=target.timeout,
        retry=retry,
        pool_size=target.concurrency,
        min_interval=target.min_interval,
        **kwargs,
    )


def _build_extractor(
    get_extractor: Callable[[str, str], type],
    role: str,
    spec: ExtractorSpec,
) -> Any:
    cls = get_extractor(role, spec.kind)
    return cls(spec.params)


# =============================================================================
# PER-TARGET ORCHESTRATION
# =============================================================================
def run_target(
    target: TargetConfig,
    settings: Settings,
    *,
    store: CheckpointStore,
    sink: RecordSink | None = None,
    fetcher: Fetcher | None = None,
    page_extractor: PageExtractor | Callable | None = None,
    detail_extractor: DetailExtractor | Callable | None = None,
    get_extractor: Callable[[str, str], type] | None = None,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> CrawlSummary:
    """
    Crawl one target to completion (or interruption) and return its summary.

    Collaborators not passed in are built from the target config; whatever
    is built here is also closed here. `store` always belongs to the caller.
    """
    start_ns = time.perf_counter_ns()
    summary = CrawlSummary(target=target.name)
    lookup = get_extractor or _default_get_extractor

    with contextlib.ExitStack() as owned:
        # ---------------------------------------------------------------------
        # 1. INIT
        # ---------------------------------------------------------------------
        state = store.load(target.name)
        logging_bridge.activity({
            "component": _COMPONENT,
            "op": "start_target",
            "target": target.name,
            "start_url": target.start_url,
            "already_completed": len(state),
            "concurrency": target.concurrency,
            "retry_limit": target.retry_limit,
        })

        if settings.skip_network:
            summary.duration_us = int((time.perf_counter_ns() - start_ns) // 1000)
            logging_bridge.activity({
                "component": _COMPONENT,
                "op": "skipped_target",
                "target": target.name,
                "reason": "skip_network",
            })
            return summary

        if fetcher is None:
            fetcher = owned.enter_context(build_fetcher(target))
        if page_extractor is None:
            page_extractor = _build_extractor(lookup, "page", target.page_extractor)
        if detail_extractor is None:
            detail_extractor = _build_extractor(lookup, "detail", target.detail_extractor)
        if sink is None:
            sink = owned.enter_context(
                open_sink(
                    settings.output_format,
                    settings.output_dir,
                    target.name,
                    _header_hint(target, settings, page_extractor, detail_extractor),
                )
            )

        try:
            # -----------------------------------------------------------------
            # 2. ENUMERATE
            # -----------------------------------------------------------------
            walker = ListingWalker(
                fetcher,
                page_extractor,
                page_param=target.page_param,
                first_page=target.first_page,
                page_delay=target.page_delay,
                max_pages=target.max_pages,
                stop_event=stop_event,
                sleep=sleep,
                target=target.name,
            )
            enumerated = list(walker.walk(target.start_url))
            report = walker.report
            summary.enumerated = len(enumerated)
            summary.pages_fetched = report.pages_fetched
            summary.enumeration_complete = report.complete
            summary.enumeration_error = report.error

            # -----------------------------------------------------------------
            # 3. FILTER
            # -----------------------------------------------------------------
            unique, summary.duplicates = unique_items(enumerated)
            work: list[WorkItem] = []
            for item in unique:
                if item.identifier in state:
                    summary.skipped += 1
                else:
                    work.append(item)
            del enumerated, unique

            logging_bridge.activity({
                "component": _COMPONENT,
                "op": "work_list",
                "target": target.name,
                "enumerated": summary.enumerated,
                "duplicates": summary.duplicates,
                "skipped": summary.skipped,
                "to_fetch": len(work),
                "pages_fetched": summary.pages_fetched,
                "enumeration_complete": summary.enumeration_complete,
            })

            # -----------------------------------------------------------------
            # 4. EXECUTE + 5. PERSIST PER COMPLETION
            # -----------------------------------------------------------------
            task = _make_task(target, fetcher, detail_extractor, sleep)
            persist = _make_persister(target, settings, store, sink, summary, total=len(work))

            pool = BoundedPool(target.concurrency, stop_event=stop_event)
            pool.run(work, task, persist, keep_results=False)
            summary.interrupted = pool.interrupted or bool(stop_event and stop_event.is_set())
        except KeyboardInterrupt:
            summary.interrupted = True
            _log_summary(summary, start_ns)
            raise
        except PersistenceError:
            _log_summary(summary, start_ns)
            raise

    # -------------------------------------------------------------------------
    # 6. FINALIZE
    # -------------------------------------------------------------------------
    _log_summary(summary, start_ns)
    return summary


def _make_task(
    target: TargetConfig,
    fetcher: Fetcher,
    detail_extractor: Callable,
    sleep: Callable[[float], None],
) -> Callable[[WorkItem], ItemOutcome]:
    """Worker-side body: fetch detail page, extract, build the merged record."""

    def _task(item: WorkItem) -> ItemOutcome:
        url = item.url
        if not url and target.detail_url_template:
            url = target.detail_url_template.format(id=item.identifier)
        if not url:
            return ItemOutcome(item=item, error="no detail URL", stage="fetch")

        try:
            outcome = fetcher.fetch(url)
            if isinstance(outcome, FetchError):
                return ItemOutcome(item=item, error=outcome.cause, stage="fetch", attempts=outcome.attempts)
            try:
                fields = detail_extractor(outcome)
            except Exception as e:
                return ItemOutcome(item=item, error=repr(e), stage="extract", attempts=outcome.attempts)
            # Detail fields win over listing metadata on conflict.
            record = make_record(item.identifier, url, item.meta, fields)
            return ItemOutcome(item=item, record=record, attempts=outcome.attempts)
        finally:
            if target.item_delay > 0:
                sleep(target.item_delay)

    return _task


def _make_persister(
    target: TargetConfig,
    settings: Settings,
    store: CheckpointStore,
    sink: RecordSink,
    summary: CrawlSummary,
    *,
    total: int,
) -> Callable[[TaskOutcome], None]:
    """Coordinator-side completion handler; raises PersistenceError on write failure."""
    position = 0

    def _write(fn: Callable[[], Any], item: WorkItem, op: str) -> None:
        try:
            fn()
        except Exception as e:
            logging_bridge.error({
                "component": _COMPONENT,
                "op": op,
                "target": target.name,
                "identifier": item.identifier,
                "error": repr(e),
            })
            raise PersistenceError(f"{op} failed for {target.name}/{item.identifier}: {e!r}") from e

    def _persist(task_outcome: TaskOutcome) -> None:
        nonlocal position
        position += 1
        if task_outcome.error is not None:
            outcome = ItemOutcome(item=task_outcome.item, error=repr(task_outcome.error), stage="task")
        else:
            outcome = task_outcome.result
        item = outcome.item
        summary.attempted += 1

        if outcome.ok and outcome.record is not None:
            record = outcome.record
            _write(lambda: sink.write(record), item, "sink_write")
            _write(lambda: store.record_completed(target.name, item.identifier, record), item, "checkpoint_write")
            summary.succeeded += 1
            logging_bridge.activity({
                "component": _COMPONENT,
                "op": "item_done",
                "target": target.name,
                "identifier": item.identifier,
                "title": item.meta.get("title", ""),
                "index": position,
                "total": total,
                "attempts": outcome.attempts,
            })
            return

        summary.failed += 1
        summary.failed_ids.append(item.identifier)
        logging_bridge.error({
            "component": _COMPONENT,
            "op": "item_failed",
            "target": target.name,
            "identifier": item.identifier,
            "url": item.url,
            "stage": outcome.stage,
            "error": outcome.error,
            "index": position,
            "total": total,
        })
        if settings.emit_failure_rows:
            placeholder = make_record(item.identifier, item.url, item.meta, {"error": outcome.error})
            _write(lambda: sink.write(placeholder), item, "sink_write")

    return _persist


def _log_summary(summary: CrawlSummary, start_ns: int) -> None:
    summary.failed_ids.sort(key=_id_sort_key)
    summary.duration_us = int((time.perf_counter_ns() - start_ns) // 1000)
    record = {"component": _COMPONENT, "op": "summary", **summary.to_dict()}
    if not summary.enumeration_complete:
        logging_bridge.warning({**record, "op": "summary_partial"})
    else:
        logging_bridge.activity(record)


def _id_sort_key(identifier: str) -> tuple[int, int, str]:
    # ASCII-numeric identifiers sort numerically, before anything else.
    if identifier.isascii() and identifier.isdigit():
        return (0, int(identifier), "")
    return (1, 0, identifier)


def _header_hint(
    target: TargetConfig,
    settings: Settings,
    page_extractor: Any,
    detail_extractor: Any,
) -> list[str] | None:
    """CSV columns known before the first record, or None to take them from it."""
    if target.fieldnames:
        return list(target.fieldnames)
    declared = getattr(detail_extractor, "field_names", None)
    fields = list(declared()) if callable(declared) else []
    if not fields:
        return None
    listed = getattr(page_extractor, "meta_names", None)
    meta = list(listed()) if callable(listed) else []
    tail = ["error"] if settings.emit_failure_rows else []
    return list(dict.fromkeys(["identifier", "source_url", *meta, *fields, *tail]))


# =============================================================================
# MAIN ORCHESTRATOR
# =============================================================================
def run_once(
    settings: Settings,
    *,
    get_extractor: Callable[[str, str], type] | None = None,
    fetcher_factory: Callable[[TargetConfig], Fetcher] | None = None,
    stop_event: threading.Event | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[CrawlSummary]:
    """
    Crawl every configured target in order, each with its own checkpoint
    scope, fetcher and sink.

    Args:
        settings: validated Settings.
        get_extractor: optional (role, kind) -> class override (for testing).
        fetcher_factory: optional TargetConfig -> fetcher override (for testing).
        stop_event: set to stop after in-flight items of the current target.

    Returns:
        One CrawlSummary per target that was started.
    """
    summaries: list[CrawlSummary] = []
    with open_store(settings.checkpoint_backend, settings.state_dir) as store:
        for target in settings.targets:
            if stop_event is not None and stop_event.is_set():
                break
            fetcher = fetcher_factory(target) if fetcher_factory else None
            try:
                summaries.append(run_target(
                    target,
                    settings,
                    store=store,
                    fetcher=fetcher,
                    get_extractor=get_extractor,
                    stop_event=stop_event,
                    sleep=sleep,
                ))
            finally:
                close = getattr(fetcher, "close", None)
                if callable(close):
                    close()
    return summaries
