# tests/test_retry.py
import random

import pytest
from urllib3.exceptions import MaxRetryError
from urllib3.response import HTTPResponse

from modules.gamesdb_crawl.lib.retry import LinearRetry, RetryPolicy


def _fail(retry, status=503):
    return retry.increment(method="GET", url="/game/1", response=HTTPResponse(status=status))


# ----------------------------------------------------------------------
# 1. Backoff schedule: base x attempt, jitter only ever stretches it
# ----------------------------------------------------------------------
def test_delay_is_linear_in_attempt_without_jitter():
    p = RetryPolicy(max_attempts=5, backoff_base=0.5, jitter=0)
    assert [p.delay_for(a) for a in (1, 2, 3)] == [0.5, 1.0, 1.5]


def test_jitter_stays_within_bounds():
    p = RetryPolicy(max_attempts=5, backoff_base=1.0, jitter=0.5)
    rng = random.Random(42)
    for attempt in (1, 2, 3):
        d = p.delay_for(attempt, rng)
        assert attempt <= d <= attempt * 1.5


# ----------------------------------------------------------------------
# 2. build(): urllib3 Retry carrying the policy
# ----------------------------------------------------------------------
def test_build_maps_policy_onto_urllib3_retry():
    p = RetryPolicy(max_attempts=4, backoff_base=0.3, retry_statuses=frozenset({503, 429}))
    r = p.build()

    assert isinstance(r, LinearRetry)
    assert r.total == 3
    assert r.raise_on_status is False
    assert r.backoff_factor == 0.3
    assert set(r.status_forcelist) == {429, 503}
    assert r.is_retry("GET", 503)
    assert not r.is_retry("GET", 404)
    assert not r.is_retry("POST", 503)


def test_backoff_grows_linearly_with_failures():
    r = RetryPolicy(max_attempts=4, backoff_base=0.5).build()
    assert r.get_backoff_time() == 0.0

    r = _fail(r)
    assert r.get_backoff_time() == 0.5
    r = _fail(r)
    assert r.get_backoff_time() == 1.0


def test_increment_keeps_sleeper_and_jitter():
    sleeps = []
    r = RetryPolicy(max_attempts=3, backoff_base=0.25, jitter=0.2).build(sleep=sleeps.append)
    r = _fail(r)

    assert r.sleeper is sleeps.append
    assert r.jitter == 0.2
    r.sleep()
    assert len(sleeps) == 1
    assert 0.25 <= sleeps[0] <= 0.25 * 1.2


def test_retry_after_header_wins_over_backoff():
    sleeps = []
    r = RetryPolicy(max_attempts=3, backoff_base=5).build(sleep=sleeps.append)
    resp = HTTPResponse(status=429, headers={"Retry-After": "2"})
    r = r.increment(method="GET", url="/list", response=resp)
    r.sleep(resp)
    assert sleeps == [2.0]


# ----------------------------------------------------------------------
# 3. Budget: `max_attempts` attempts, then urllib3 gives up
# ----------------------------------------------------------------------
@pytest.mark.parametrize("max_attempts", [1, 3])
def test_exhausts_after_max_attempts(max_attempts):
    r = RetryPolicy(max_attempts=max_attempts, backoff_base=0).build()
    for _ in range(max_attempts - 1):
        r = _fail(r)
    with pytest.raises(MaxRetryError):
        _fail(r)


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
