"""
Bounded worker pool.

A ThreadPoolExecutor with a sliding submission window: never more than
`concurrency` tasks are submitted-but-unfinished, items are pulled from the
input iterator lazily and in order, and every completion is handed to
`on_complete` on the coordinating thread as soon as it is observed.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")

log = logging.getLogger(__name__)


@dataclass
class TaskOutcome(Generic[T, R]):
    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedPool:
    def __init__(
        self,
        concurrency: int,
        *,
        stop_event: threading.Event | None = None,
        thread_name_prefix: str = "crawl-worker",
    ):
        if int(concurrency) < 1:
            raise ValueError("concurrency must be >= 1")
        self.concurrency = int(concurrency)
        self.stop_event = stop_event
        self.thread_name_prefix = thread_name_prefix
        self.interrupted = False
        self.submitted = 0
        self.completed = 0
        self.peak_in_flight = 0

    def run(
        self,
        items: Iterable[T],
        task: Callable[[T], R],
        on_complete: Callable[[TaskOutcome[T, R]], Any] | None = None,
        *,
        keep_results: bool = True,
    ) -> list[TaskOutcome[T, R]]:
        """
        Run `task` over every item with at most `concurrency` in flight.

        Task exceptions are captured per item. An exception raised by
        `on_complete` stops dispatch, cancels queued work, waits for the
        in-flight tasks and propagates.
        """
        self.interrupted = False
        results: list[TaskOutcome[T, R]] = []
        source = iter(items)
        in_flight: dict[Future, T] = {}
        exhausted = False

        executor = ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix=self.thread_name_prefix)
        try:
            while True:
                # Top up the window.
                while not exhausted and len(in_flight) < self.concurrency:
                    if self._stopping():
                        self.interrupted = True
                        exhausted = True
                        break
                    try:
                        item = next(source)
                    except StopIteration:
                        exhausted = True
                        break
                    in_flight[executor.submit(task, item)] = item
                    self.submitted += 1
                    self.peak_in_flight = max(self.peak_in_flight, len(in_flight))

                if not in_flight:
                    break

                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    item = in_flight.pop(fut)
                    exc = fut.exception()
                    if exc is not None:
                        log.debug("task failed for %r: %r", item, exc)
                        outcome: TaskOutcome[T, R] = TaskOutcome(item=item, error=exc)
                    else:
                        outcome = TaskOutcome(item=item, result=fut.result())
                    self.completed += 1
                    if on_complete is not None:
                        on_complete(outcome)
                    if keep_results:
                        results.append(outcome)
        except BaseException:
            for fut in in_flight:
                fut.cancel()
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return results

    def _stopping(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()
