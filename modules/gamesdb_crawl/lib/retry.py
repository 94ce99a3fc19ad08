"""
Retry policy for outbound HTTP.

RetryPolicy holds the attempt budget and the delay schedule for a target and
builds the urllib3 Retry that HttpClient mounts on its HTTPAdapter, so the
retries themselves run inside the connection pool:

    delay(attempt) = backoff_base * attempt * (1 + uniform(0, jitter))

`max_attempts` counts total attempts (first try included).
"""

from __future__ import annotations

import random
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from urllib3.util.retry import Retry

DEFAULT_RETRY_STATUSES = frozenset({429, 500, 502, 503, 504})


def linear_delay(backoff_base: float, attempt: int, jitter: float = 0.0, rng: random.Random | None = None) -> float:
    """Seconds to wait after failed attempt number `attempt` (1-based)."""
    delay = backoff_base * max(1, attempt)
    if jitter > 0:
        delay *= 1.0 + (rng or random).uniform(0.0, jitter)
    return delay


class LinearRetry(Retry):
    """
    urllib3 Retry with the linear jittered schedule above and an injectable
    sleep. urllib3 copies a Retry on every increment, so `new()` carries the
    extra attributes along.
    """

    def __init__(
        self,
        *args: Any,
        jitter: float = 0.0,
        sleeper: Callable[[float], None] = time.sleep,
        rng: random.Random | None = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.jitter = jitter
        self.sleeper = sleeper
        self.rng = rng

    def new(self, **kw: Any) -> LinearRetry:
        retry = super().new(**kw)
        retry.jitter = self.jitter
        retry.sleeper = self.sleeper
        retry.rng = self.rng
        return retry

    def get_backoff_time(self) -> float:
        failures = sum(1 for h in self.history if h.redirect_location is None)
        if failures < 1:
            return 0.0
        return linear_delay(self.backoff_factor, failures, self.jitter, self.rng)

    def sleep(self, response: Any = None) -> None:
        if self.respect_retry_after_header and response is not None:
            retry_after = self.get_retry_after(response)
            if retry_after:
                self.sleeper(retry_after)
                return
        backoff = self.get_backoff_time()
        if backoff > 0:
            self.sleeper(backoff)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    backoff_base: float = 0.5
    jitter: float = 0.0
    retry_statuses: frozenset[int] = field(default=DEFAULT_RETRY_STATUSES)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.backoff_base < 0 or self.jitter < 0:
            raise ValueError("backoff_base and jitter must be >= 0")

    def delay_for(self, attempt: int, rng: random.Random | None = None) -> float:
        return linear_delay(self.backoff_base, attempt, self.jitter, rng)

    def build(self, *, sleep: Callable[[float], None] = time.sleep, rng: random.Random | None = None) -> LinearRetry:
        """
        urllib3 Retry for this policy. Statuses in `retry_statuses` and
        connection/read errors are retried; when the budget runs out the last
        response is returned rather than raised (raise_on_status=False).
        """
        return LinearRetry(
            total=self.max_attempts - 1,
            backoff_factor=self.backoff_base,
            status_forcelist=sorted(self.retry_statuses),
            allowed_methods=frozenset(["GET", "HEAD"]),
            raise_on_status=False,
            jitter=self.jitter,
            sleeper=sleep,
            rng=rng,
        )
