"""
Listing walker: enumerate work items from a page-numbered index.

Pages are strictly sequential: page N+1 is only requested after page N has
been parsed and said there is more. The walk ends on an empty page, on
has_next=False, or early on a listing failure (fetch exhausted or parser
blew up). An early end is recorded in `report` so the caller can tell a
partial enumeration from a complete one.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterator
from typing import Protocol
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from . import logging_bridge
from .models import FetchError, FetchOutcome, ListingReport, PageResult, Payload, WorkItem


class Fetcher(Protocol):
    def fetch(self, url: str) -> FetchOutcome: ...


PageExtractor = Callable[[Payload], PageResult]


def build_page_url(start_url: str, page: int, page_param: str = "page") -> str:
    """
    Return start_url with `page_param=page` set, replacing any existing value
    and keeping the other query parameters in order.
    """
    parts = urlsplit(start_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != page_param]
    query.append((page_param, str(page)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class ListingWalker:
    def __init__(
        self,
        fetcher: Fetcher,
        page_extractor: PageExtractor,
        *,
        page_param: str = "page",
        first_page: int = 1,
        page_delay: float = 0.0,
        max_pages: int | None = None,
        stop_event: threading.Event | None = None,
        sleep: Callable[[float], None] = time.sleep,
        target: str = "",
    ):
        self.fetcher = fetcher
        self.page_extractor = page_extractor
        self.page_param = page_param
        self.first_page = int(first_page)
        self.page_delay = max(0.0, float(page_delay))
        self.max_pages = max_pages
        self.stop_event = stop_event
        self._sleep = sleep
        self.target = target
        self.report = ListingReport()

    def walk(self, start_url: str) -> Iterator[WorkItem]:
        """
        Lazily yield WorkItems page by page. Each call restarts at first_page
        and resets `report`.
        """
        self.report = ListingReport()
        page = self.first_page

        while True:
            if self.stop_event is not None and self.stop_event.is_set():
                self._stop_early("interrupted", url=None)
                return
            if self.max_pages is not None and self.report.pages_fetched >= self.max_pages:
                self._stop_early(f"stopped at max_pages={self.max_pages}", url=None)
                return

            url = build_page_url(start_url, page, self.page_param)
            self.report.last_url = url
            outcome = self.fetcher.fetch(url)
            if isinstance(outcome, FetchError):
                self._stop_early(f"listing fetch failed: {outcome.cause}", url=url, page=page)
                return

            try:
                result = self.page_extractor(outcome)
            except Exception as e:
                self._stop_early(f"listing parse failed: {e!r}", url=url, page=page)
                return

            self.report.pages_fetched += 1
            self.report.items_seen += len(result.items)
            logging_bridge.activity({
                "component": "gamesdb_crawl.listing",
                "op": "page",
                "target": self.target,
                "page": page,
                "url": url,
                "items": len(result.items),
                "has_next": bool(result.has_next),
            })

            yield from result.items

            if not result.items or not result.has_next:
                self.report.complete = True
                return

            page += 1
            if self.page_delay > 0:
                self._sleep(self.page_delay)

    def _stop_early(self, reason: str, *, url: str | None, page: int | None = None) -> None:
        self.report.complete = False
        self.report.error = reason
        logging_bridge.warning({
            "component": "gamesdb_crawl.listing",
            "op": "partial_enumeration",
            "target": self.target,
            "page": page,
            "url": url,
            "pages_fetched": self.report.pages_fetched,
            "items_seen": self.report.items_seen,
            "reason": reason,
        })
