"""
Bounded parallelism for sweeps.

Sweeps hand each claimed item to run_bounded, which uses a thread pool
sized by SWEEP_MAX_WORKERS. With one worker the items run inline on the
calling thread, which keeps test transactions visible. Pool threads close
their own database connection after each item.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, TypeVar

from django.conf import settings
from django.db import connection

T = TypeVar("T")
R = TypeVar("R")


def max_workers() -> int:
    return max(1, int(getattr(settings, "SWEEP_MAX_WORKERS", 4)))


def _in_thread(func: Callable[[T], R], item: T) -> R:
    try:
        return func(item)
    finally:
        # Worker threads never reuse their connection, whatever CONN_MAX_AGE says
        connection.close()


def run_bounded(func: Callable[[T], R], items: Iterable[T]) -> list[R]:
    """
    Run func over items with at most SWEEP_MAX_WORKERS threads.

    func must not raise; sweeps wrap their per-item work so one bad item
    cannot abort the batch. Results come back in completion order.
    """
    items = list(items)
    workers = min(max_workers(), len(items))
    if workers <= 1:
        return [func(item) for item in items]

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="sweep") as executor:
        futures = [executor.submit(_in_thread, func, item) for item in items]
        return [future.result() for future in as_completed(futures)]
