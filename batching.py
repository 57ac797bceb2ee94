#!/usr/bin/env python3
"""
Windowed batch scheduler for provider fetches.

Items are processed in consecutive windows of ``window_size``. Every item in
a window runs concurrently; the next window starts only after the whole
window has settled and a fixed pause has elapsed. Results come back in input
order.

Workers are expected to handle their own failures. ``isolated`` wraps a
worker so that an exception becomes a failed ``FetchOutcome`` for that item
instead of propagating out of the window.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from run_context import get_logger

log = get_logger("batching")

DEFAULT_INTER_BATCH_DELAY = 0.8


@dataclass
class FetchOutcome:
    """Tagged per-item result: ``value`` on success, ``error`` on failure."""
    code: str
    value: Any = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_batches(items: Sequence, worker: Callable[[Any, int], Any],
                window_size: int,
                inter_batch_delay: float = DEFAULT_INTER_BATCH_DELAY) -> list:
    """Run ``worker(item, index)`` over ``items`` one window at a time."""
    if window_size < 1:
        raise ValueError(f"window_size must be >= 1, got {window_size}")
    items = list(items)
    results: list = []
    n_batches = (len(items) + window_size - 1) // window_size

    for bi in range(n_batches):
        start = bi * window_size
        batch = items[start:start + window_size]
        log.info(f"Processing batch {bi + 1}/{n_batches} "
                 f"({start + len(batch)}/{len(items)})",
                 extra={"batch": bi + 1, "count": len(batch)})

        with ThreadPoolExecutor(max_workers=len(batch)) as pool:
            futs = [pool.submit(worker, item, start + j) for j, item in enumerate(batch)]
            # Collected positionally, so completion order does not matter
            results.extend(f.result() for f in futs)

        if bi < n_batches - 1:
            log.debug(f"Waiting {inter_batch_delay:.1f}s before next batch")
            time.sleep(inter_batch_delay)

    return results


def isolated(worker: Callable[[str, int], Any]) -> Callable[[str, int], FetchOutcome]:
    """Wrap ``worker`` so each call returns a FetchOutcome and never raises."""

    def _run(code: str, index: int) -> FetchOutcome:
        try:
            return FetchOutcome(code, worker(code, index))
        except Exception as exc:
            log.warning(f"Error fetching data for {code}: {exc}", extra={"code": code})
            return FetchOutcome(code, None, str(exc))

    return _run
