# gamesdb_crawl/http_client.py
from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Mapping
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.exceptions import MaxRetryError

from .models import FetchError, FetchOutcome, Payload
from .retry import RetryPolicy

LOG = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "GamesDbCrawl/0.1 (+https://example.invalid)"


class HttpClient:
    """
    Shared HTTP client: the only thing in the crawl that talks to the network.

    - one pooled requests.Session for all worker threads
    - bounded timeout on every attempt
    - retries and backoff run in the adapter (urllib3 Retry from RetryPolicy)
    - optional min_interval spacing between fetches
    - fetch() returns Payload | FetchError and never raises
    """

    def __init__(
        self,
        timeout: float = 15.0,
        *,
        retry: RetryPolicy | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
        pool_size: int = 10,
        min_interval: float = 0.0,
        headers: Mapping[str, str] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = float(timeout)
        self.retry = retry or RetryPolicy()
        self.min_interval = max(0.0, float(min_interval))
        self._sleep = sleep

        self.session = requests.Session()
        self.session.headers.update({
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        })
        if headers:
            self.session.headers.update(dict(headers))

        size = max(1, int(pool_size))
        adapter = HTTPAdapter(max_retries=self.retry.build(sleep=sleep), pool_connections=size, pool_maxsize=size)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        self._lock = threading.Lock()
        self._next_slot = 0.0
        self.requests_made = 0
        self.fetch_failures = 0

    # ---- main entry ----
    def fetch(self, url: str, *, params: Mapping[str, Any] | None = None) -> FetchOutcome:
        """GET `url` under the retry policy; Payload on success, FetchError otherwise."""
        started = time.perf_counter()
        self._throttle()
        with self._lock:
            self.requests_made += 1

        try:
            resp = self.session.get(url, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            attempts = self.retry.max_attempts if _retries_exhausted(e) else 1
            return self._failed(url, repr(e), attempts)
        except Exception as e:
            LOG.debug("fetch %s raised outside requests", url, exc_info=True)
            return self._failed(url, repr(e), 1)

        try:
            attempts = _attempts_of(resp)
            status = resp.status_code
            if not 200 <= status < 400:
                return self._failed(url, f"HTTP {status} for {url}", attempts, status)
            if not resp.encoding and resp.apparent_encoding:
                resp.encoding = resp.apparent_encoding
            return Payload(
                url=url,
                effective_url=resp.url or url,
                status_code=status,
                text=resp.text,
                attempts=attempts,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
            )
        except Exception as e:
            return self._failed(url, repr(e), attempts)
        finally:
            resp.close()

    def _failed(self, url: str, cause: str, attempts: int, status_code: int | None = None) -> FetchError:
        with self._lock:
            self.fetch_failures += 1
        LOG.debug("fetch %s failed after %d attempt(s): %s", url, attempts, cause)
        return FetchError(url=url, cause=cause, attempts=attempts, status_code=status_code)

    # ---- politeness ----
    def _throttle(self) -> None:
        """Reserve the next send slot under the lock, sleep outside it."""
        if self.min_interval <= 0:
            return
        with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval
        wait = slot - now
        if wait > 0:
            self._sleep(wait)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("HttpClient.close() swallow", exc_info=True)

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def _attempts_of(resp: requests.Response) -> int:
    """Attempts behind a response: urllib3 leaves its Retry (with history) on the raw response."""
    retries = getattr(resp.raw, "retries", None)
    history = getattr(retries, "history", None) or ()
    return len(history) + 1


def _retries_exhausted(exc: BaseException) -> bool:
    # requests wraps urllib3's MaxRetryError as the first argument.
    return any(isinstance(a, MaxRetryError) for a in getattr(exc, "args", ()))
