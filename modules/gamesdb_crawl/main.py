from __future__ import annotations

import contextlib
import signal
import threading
from collections.abc import Iterator
from typing import Any

from .lib.config import Settings
from .lib.engine import run_once as _run_engine
from .lib.logging_bridge import activity as log_activity
from .lib.logging_bridge import warning as log_warning


def run(**kwargs: Any) -> dict[str, Any]:
    """
    Entry point for the 'gamesdb_crawl' module.

    Accepts kwargs (from a scheduler/runner), including:
      targets: list[dict] | None       # inline target objects, or
      targets_path: str | None         # JSON file with the target list
      only: list[str] | str | None     # crawl just these target names
      state_dir: str = "/app/local/state/crawl"
      output_dir: str = "/app/local/data/crawl"
      checkpoint_backend: "sqlite" | "jsonl" = "sqlite"
      output_format: "csv" | "jsonl" = "csv"
      emit_failure_rows: bool = False
      skip_network: bool = False

    SIGINT/SIGTERM stop dispatching new items; in-flight items finish and are
    persisted, so the next run resumes where this one stopped.

    Returns:
      {"targets": [summary dict, ...], "failed_ids": {target: [...]},
       "interrupted": bool}
    """
    settings = Settings.from_env_and_kwargs(kwargs)

    log_activity({
        "component": "gamesdb_crawl.main",
        "op": "start",
        "targets": [t.name for t in settings.targets],
        "state_dir": settings.state_dir,
        "output_dir": settings.output_dir,
        "flags": {
            "checkpoint_backend": settings.checkpoint_backend,
            "output_format": settings.output_format,
            "emit_failure_rows": settings.emit_failure_rows,
            "skip_network": settings.skip_network,
        },
    })

    stop_event = threading.Event()
    with _stop_on_signals(stop_event):
        summaries = _run_engine(settings, stop_event=stop_event)

    return {
        "targets": [s.to_dict() for s in summaries],
        "failed_ids": {s.target: list(s.failed_ids) for s in summaries if s.failed_ids},
        "interrupted": stop_event.is_set(),
    }


@contextlib.contextmanager
def _stop_on_signals(stop_event: threading.Event) -> Iterator[None]:
    """
    Route SIGINT/SIGTERM to `stop_event` for the duration of the run.
    Signal handlers can only be installed from the main thread; elsewhere
    (scheduler worker threads) this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def _graceful_stop(signum=None, frame=None):
        log_warning({
            "component": "gamesdb_crawl.main",
            "op": "signal",
            "signal": signum,
            "action": "finishing in-flight items, then stopping",
        })
        stop_event.set()

    previous = {}
    for sig in (signal.SIGINT, signal.SIGTERM):
        previous[sig] = signal.signal(sig, _graceful_stop)
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
